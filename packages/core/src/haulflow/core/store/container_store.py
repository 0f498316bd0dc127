"""ContainerStore SQLite 实现

destination_containers.current_amount 是 fill_history 的缓存投影，
只能通过 apply_transfer / reset_destination / set_current_amount 修改，
并且调用方必须在同一事务内追加对应的 fill_history 记录。
"""

from datetime import datetime

import aiosqlite

from ..models.container import DestinationContainer, SourceContainer
from .encoding import insert_sql, row_to_dict, to_db

_SOURCE_COLUMNS: list[str] = list(SourceContainer.model_fields)
_DESTINATION_COLUMNS: list[str] = list(DestinationContainer.model_fields)


class SqliteContainerStore:
    """来源/目的容器的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    # --- 来源容器 ---

    async def create_source_container(self, container: SourceContainer) -> None:
        await self._conn.execute(
            insert_sql("source_containers", _SOURCE_COLUMNS),
            [to_db(getattr(container, column)) for column in _SOURCE_COLUMNS],
        )

    async def get_source_container(self, container_id: str) -> SourceContainer | None:
        cursor = await self._conn.execute(
            "SELECT * FROM source_containers WHERE container_id = ?",
            (container_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return SourceContainer.model_validate(row_to_dict(row))

    async def mark_source_emptied(self, container_id: str, emptied_at: datetime) -> None:
        """写入来源容器的最近清空时间"""
        await self._conn.execute(
            """
            UPDATE source_containers
            SET last_emptied_at = ?, updated_at = ?
            WHERE container_id = ?
            """,
            (to_db(emptied_at), to_db(emptied_at), container_id),
        )

    # --- 目的容器 ---

    async def create_destination_container(self, container: DestinationContainer) -> None:
        await self._conn.execute(
            insert_sql("destination_containers", _DESTINATION_COLUMNS),
            [to_db(getattr(container, column)) for column in _DESTINATION_COLUMNS],
        )

    async def get_destination_container(
        self, container_id: str
    ) -> DestinationContainer | None:
        cursor = await self._conn.execute(
            "SELECT * FROM destination_containers WHERE container_id = ?",
            (container_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return DestinationContainer.model_validate(row_to_dict(row))

    async def list_destination_containers(self) -> list[DestinationContainer]:
        cursor = await self._conn.execute(
            "SELECT * FROM destination_containers ORDER BY container_id"
        )
        rows = await cursor.fetchall()
        return [DestinationContainer.model_validate(row_to_dict(row)) for row in rows]

    async def apply_transfer(
        self,
        container_id: str,
        material_type: str,
        amount: float,
        updated_at: datetime,
    ) -> bool:
        """原子地把 amount 加到目的容器

        物料匹配、容器有效、加上 amount 后不超过 max_capacity 三个条件
        与写入在同一条 UPDATE 中判断，读取的是提交时刻的 current_amount。

        Returns:
            True 表示写入成功；False 表示任一条件不满足，未做任何修改
        """
        cursor = await self._conn.execute(
            """
            UPDATE destination_containers
            SET current_amount = current_amount + ?, updated_at = ?
            WHERE container_id = ?
              AND material_type = ?
              AND is_active = 1
              AND current_amount + ? <= max_capacity
            """,
            (amount, to_db(updated_at), container_id, material_type, amount),
        )
        return cursor.rowcount == 1

    async def reset_destination(
        self,
        container_id: str,
        expected_amount: float,
        emptied_at: datetime,
    ) -> bool:
        """清空目的容器，仅当 current_amount 仍等于 expected_amount 时生效"""
        cursor = await self._conn.execute(
            """
            UPDATE destination_containers
            SET current_amount = 0, last_emptied_at = ?, updated_at = ?
            WHERE container_id = ? AND current_amount = ?
            """,
            (to_db(emptied_at), to_db(emptied_at), container_id, expected_amount),
        )
        return cursor.rowcount == 1

    async def set_current_amount(
        self,
        container_id: str,
        amount: float,
        updated_at: datetime,
    ) -> None:
        """直接覆盖 current_amount（仅供流水重建使用）"""
        await self._conn.execute(
            """
            UPDATE destination_containers
            SET current_amount = ?, updated_at = ?
            WHERE container_id = ?
            """,
            (amount, to_db(updated_at), container_id),
        )
