"""全局 pytest 配置 -- 临时 SQLite 数据库 + 测试数据构造 fixture"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path

import aiosqlite
import pytest_asyncio


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "test.db"


@pytest_asyncio.fixture
async def db_conn(tmp_db_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """提供已初始化的临时 SQLite 数据库连接"""
    from haulflow.core.store.sqlite_init import init_db

    conn = await aiosqlite.connect(str(tmp_db_path))
    await init_db(conn)
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def store_group(tmp_db_path: Path):
    """提供已初始化的 StoreGroup"""
    from haulflow.core.store import create_store_group

    stores = await create_store_group(str(tmp_db_path))
    yield stores
    await stores.close()


@pytest_asyncio.fixture
async def seed_catalog(store_group) -> Callable[..., Awaitable[None]]:
    """写入一组标准测试目录

    来源容器 src-metal（metal）、src-paper（paper）；
    目的容器 dst-metal（metal，1000 kg）、dst-paper（paper，500 kg）；
    每日取货点 stand-1（metal）与非每日取货点 stand-2；承运箱 box-1。
    """
    from haulflow.core.catalog import Catalog, load_catalog

    async def _seed(dst_metal_amount: float = 0.0) -> None:
        catalog = Catalog(
            source_containers=[
                {"container_id": "src-metal", "label": "Hall A", "material_type": "metal"},
                {"container_id": "src-paper", "label": "Office", "material_type": "paper"},
            ],
            destination_containers=[
                {
                    "container_id": "dst-metal",
                    "material_type": "metal",
                    "max_capacity": 1000,
                    "current_amount": dst_metal_amount,
                },
                {"container_id": "dst-paper", "material_type": "paper", "max_capacity": 500},
            ],
            stands=[
                {
                    "stand_id": "stand-1",
                    "identifier": "A-01",
                    "material_type": "metal",
                    "daily_full": True,
                    "source_container_id": "src-metal",
                    "destination_container_id": "dst-metal",
                },
                {"stand_id": "stand-2", "material_type": "paper", "daily_full": False},
            ],
            boxes=[{"box_id": "box-1", "label": "Box 1"}],
        )
        await load_catalog(store_group, catalog)

    return _seed

