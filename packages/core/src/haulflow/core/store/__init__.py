"""HaulFlow Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
"""

import asyncio
from contextlib import AbstractAsyncContextManager
from pathlib import Path

import aiosqlite

from .container_store import SqliteContainerStore
from .ledger_store import SqliteLedgerStore
from .protocols import ContainerStore, LedgerStore, StandStore, TaskStore
from .sqlite_init import init_db
from .stand_store import SqliteStandStore
from .task_store import SqliteTaskStore
from .transaction import apply_task_change, atomic, commit_transfer


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接与写锁"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self.write_lock = asyncio.Lock()
        self.task_store: TaskStore = SqliteTaskStore(conn)
        self.container_store: ContainerStore = SqliteContainerStore(conn)
        self.stand_store: StandStore = SqliteStandStore(conn)
        self.ledger_store: LedgerStore = SqliteLedgerStore(conn)

    def atomic(self) -> AbstractAsyncContextManager["StoreGroup"]:
        """开启一个原子写事务，见 transaction.atomic"""
        return atomic(self)

    async def close(self) -> None:
        await self.conn.close()


async def create_store_group(db_path: str) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径

    Returns:
        StoreGroup 实例
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    await init_db(conn)

    return StoreGroup(conn=conn)


__all__ = [
    "StoreGroup",
    "create_store_group",
    "SqliteTaskStore",
    "SqliteContainerStore",
    "SqliteStandStore",
    "SqliteLedgerStore",
    "TaskStore",
    "ContainerStore",
    "StandStore",
    "LedgerStore",
    "init_db",
    "atomic",
    "apply_task_change",
    "commit_transfer",
]
