"""StandStore SQLite 实现 -- 固定取货点与承运箱

stands 由配置创建，运行期只会写 last_daily_task_generated_at。
"""

from datetime import datetime

import aiosqlite

from ..models.enums import BoxStatus
from ..models.stand import Box, Stand
from .encoding import insert_sql, row_to_dict, to_db

_STAND_COLUMNS: list[str] = list(Stand.model_fields)
_BOX_COLUMNS: list[str] = list(Box.model_fields)


class SqliteStandStore:
    """Stand / Box 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_stand(self, stand: Stand) -> None:
        await self._conn.execute(
            insert_sql("stands", _STAND_COLUMNS),
            [to_db(getattr(stand, column)) for column in _STAND_COLUMNS],
        )

    async def get_stand(self, stand_id: str) -> Stand | None:
        cursor = await self._conn.execute(
            "SELECT * FROM stands WHERE stand_id = ?",
            (stand_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Stand.model_validate(row_to_dict(row))

    async def list_daily_stands(self) -> list[Stand]:
        """查询所有启用且标记 daily_full 的取货点"""
        cursor = await self._conn.execute(
            """
            SELECT * FROM stands
            WHERE is_active = 1 AND daily_full = 1
            ORDER BY stand_id
            """
        )
        rows = await cursor.fetchall()
        return [Stand.model_validate(row_to_dict(row)) for row in rows]

    async def mark_daily_generated(self, stand_id: str, generated_at: datetime) -> None:
        await self._conn.execute(
            """
            UPDATE stands
            SET last_daily_task_generated_at = ?, updated_at = ?
            WHERE stand_id = ?
            """,
            (to_db(generated_at), to_db(generated_at), stand_id),
        )

    # --- 承运箱 ---

    async def create_box(self, box: Box) -> None:
        await self._conn.execute(
            insert_sql("boxes", _BOX_COLUMNS),
            [to_db(getattr(box, column)) for column in _BOX_COLUMNS],
        )

    async def get_box(self, box_id: str) -> Box | None:
        cursor = await self._conn.execute(
            "SELECT * FROM boxes WHERE box_id = ?",
            (box_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Box.model_validate(row_to_dict(row))

    async def occupy_box(self, box_id: str, task_id: str, updated_at: datetime) -> bool:
        """将空闲的箱子绑定到任务"""
        cursor = await self._conn.execute(
            """
            UPDATE boxes
            SET status = ?, current_task_id = ?, updated_at = ?
            WHERE box_id = ? AND (current_task_id IS NULL OR current_task_id = ?)
            """,
            (BoxStatus.IN_USE.value, task_id, to_db(updated_at), box_id, task_id),
        )
        return cursor.rowcount == 1

    async def release_box(self, box_id: str, task_id: str, updated_at: datetime) -> bool:
        """释放箱子回到未分配状态；箱子已被其他任务占用时不做修改"""
        cursor = await self._conn.execute(
            """
            UPDATE boxes
            SET status = ?, current_task_id = NULL, updated_at = ?
            WHERE box_id = ? AND (current_task_id IS NULL OR current_task_id = ?)
            """,
            (BoxStatus.AVAILABLE.value, to_db(updated_at), box_id, task_id),
        )
        return cursor.rowcount == 1
