"""目录装载 -- 从 JSON 文件写入容器、取货点与承运箱

取货点“由配置创建”，运行期只读。文件格式：

    {
      "source_containers": [{"container_id": ..., "material_type": ..., ...}],
      "destination_containers": [{"container_id": ..., "max_capacity": ..., ...}],
      "stands": [{"stand_id": ..., "daily_full": true, ...}],
      "boxes": [{"box_id": ..., "label": ...}]
    }

目的容器的初始装载量非零时，写入一条开账流水，保证装载量始终等于流水合计。
"""

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, Field
from ulid import ULID

from .config import SYSTEM_ACTOR_ID
from .models.container import DestinationContainer, SourceContainer
from .models.ledger import FillHistoryEntry
from .models.stand import Box, Stand
from .store import StoreGroup

log = structlog.get_logger()


class Catalog(BaseModel):
    """目录文件结构"""

    source_containers: list[dict[str, Any]] = Field(default_factory=list)
    destination_containers: list[dict[str, Any]] = Field(default_factory=list)
    stands: list[dict[str, Any]] = Field(default_factory=list)
    boxes: list[dict[str, Any]] = Field(default_factory=list)


class CatalogCounts(BaseModel):
    source_containers: int = 0
    destination_containers: int = 0
    stands: int = 0
    boxes: int = 0
    opening_entries: int = 0


def read_catalog(path: str | Path) -> Catalog:
    """读取并校验目录文件"""
    return Catalog.model_validate(json.loads(Path(path).read_text(encoding="utf-8")))


async def load_catalog(stores: StoreGroup, catalog: Catalog) -> CatalogCounts:
    """在一个事务内写入目录；任一条目非法时整体回滚"""
    now = datetime.now(UTC)
    stamps = {"created_at": now, "updated_at": now}
    counts = CatalogCounts()

    async with stores.atomic():
        for item in catalog.source_containers:
            source = SourceContainer.model_validate({**stamps, **item})
            await stores.container_store.create_source_container(source)
            counts.source_containers += 1

        for item in catalog.destination_containers:
            destination = DestinationContainer.model_validate({**stamps, **item})
            await stores.container_store.create_destination_container(destination)
            counts.destination_containers += 1
            if destination.current_amount:
                await stores.ledger_store.append_fill(
                    FillHistoryEntry(
                        entry_id=str(ULID()),
                        container_id=destination.container_id,
                        amount_added=destination.current_amount,
                        unit=destination.quantity_unit,
                        recorded_by=SYSTEM_ACTOR_ID,
                        created_at=now,
                    )
                )
                counts.opening_entries += 1

        for item in catalog.stands:
            await stores.stand_store.create_stand(Stand.model_validate({**stamps, **item}))
            counts.stands += 1

        for item in catalog.boxes:
            await stores.stand_store.create_box(Box.model_validate({"updated_at": now, **item}))
            counts.boxes += 1

    await log.ainfo("catalog_loaded", **counts.model_dump())
    return counts
