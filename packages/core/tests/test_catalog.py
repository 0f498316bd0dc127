"""目录装载测试"""

import json

import pytest
from haulflow.core.catalog import Catalog, load_catalog, read_catalog
from haulflow.core.config import SYSTEM_ACTOR_ID
from pydantic import ValidationError


class TestLoadCatalog:
    async def test_opening_entry_for_prefilled_container(self, store_group, seed_catalog):
        await seed_catalog(dst_metal_amount=250)

        history = await store_group.ledger_store.list_fill_history("dst-metal")
        assert len(history) == 1
        assert history[0].amount_added == 250
        assert history[0].recorded_by == SYSTEM_ACTOR_ID
        assert await store_group.ledger_store.list_fill_history("dst-paper") == []

    async def test_invalid_entry_rolls_back_everything(self, store_group):
        catalog = Catalog(
            source_containers=[{"container_id": "src-1", "material_type": "metal"}],
            destination_containers=[{"container_id": "dst-1", "material_type": "metal"}],
        )
        # dst-1 缺少 max_capacity
        with pytest.raises(ValidationError):
            await load_catalog(store_group, catalog)

        assert await store_group.container_store.get_source_container("src-1") is None

    async def test_counts(self, store_group, tmp_path):
        path = tmp_path / "catalog.json"
        path.write_text(
            json.dumps(
                {
                    "destination_containers": [
                        {"container_id": "dst-1", "material_type": "glass", "max_capacity": 50}
                    ],
                    "boxes": [{"box_id": "b-1"}, {"box_id": "b-2"}],
                }
            ),
            encoding="utf-8",
        )

        counts = await load_catalog(store_group, read_catalog(path))

        assert counts.destination_containers == 1
        assert counts.boxes == 2
        assert counts.opening_entries == 0
