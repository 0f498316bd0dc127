"""原子事务封装

所有多行写入都在 atomic() 内完成：同一连接上的写事务由 asyncio.Lock 串行化，
正常退出时提交，任何异常（包括任务取消）都回滚后原样抛出。

apply_task_change / commit_transfer 是事务内的组合步骤，命中失败时抛出
TaskStatusConflictError / TransferRejectedError，使整个事务回滚、不留部分写入。
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import TYPE_CHECKING

from ulid import ULID

from ..exceptions import TaskStatusConflictError, TransferRejectedError
from ..models.ledger import FillHistoryEntry

if TYPE_CHECKING:
    from . import StoreGroup


@asynccontextmanager
async def atomic(stores: "StoreGroup") -> AsyncIterator["StoreGroup"]:
    """在同一 SQLite 事务内执行一组写操作

    Raises:
        BaseException: 事务体内的任何异常，回滚后原样抛出
    """
    async with stores.write_lock:
        try:
            yield stores
            await stores.conn.commit()
        except BaseException:
            await stores.conn.rollback()
            raise


async def apply_task_change(
    stores: "StoreGroup",
    task_id: str,
    expected_status: str,
    changes: dict[str, object],
    now: datetime,
    require_unowned: bool = False,
) -> None:
    """条件更新任务，未命中时抛 TaskStatusConflictError 以回滚事务"""
    updated = await stores.task_store.update_task_if_status(
        task_id,
        expected_status,
        changes,
        updated_at=now,
        require_unowned=require_unowned,
    )
    if not updated:
        raise TaskStatusConflictError(task_id, expected_status)


async def commit_transfer(
    stores: "StoreGroup",
    *,
    task_id: str,
    destination_id: str,
    material_type: str,
    amount: float,
    unit: str,
    recorded_by: str,
    now: datetime,
) -> FillHistoryEntry:
    """权威容量检查 + 写入目的容器 + 追加 fill_history

    容量检查与写入是同一条条件 UPDATE，使用提交时刻的 current_amount。

    Raises:
        TransferRejectedError: 物料不匹配、容器停用或容量不足
    """
    applied = await stores.container_store.apply_transfer(
        destination_id,
        material_type,
        amount,
        updated_at=now,
    )
    if not applied:
        raise TransferRejectedError(destination_id, decision=None)

    entry = FillHistoryEntry(
        entry_id=str(ULID()),
        container_id=destination_id,
        amount_added=amount,
        unit=unit,
        task_id=task_id,
        recorded_by=recorded_by,
        created_at=now,
    )
    await stores.ledger_store.append_fill(entry)
    return entry
