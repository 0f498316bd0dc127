"""LedgerStore SQLite 实现 -- fill_history 与 activity_log

两张表都是 append-only：只允许插入，不允许更新或删除。
"""

import json

import aiosqlite

from ..models.ledger import ActivityLogEntry, FillHistoryEntry
from .encoding import insert_sql, row_to_dict, to_db

_FILL_COLUMNS: list[str] = list(FillHistoryEntry.model_fields)
_ACTIVITY_COLUMNS: list[str] = list(ActivityLogEntry.model_fields)


class SqliteLedgerStore:
    """Fill History / Activity Log 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append_fill(self, entry: FillHistoryEntry) -> None:
        """追加装载量流水（append-only）"""
        await self._conn.execute(
            insert_sql("fill_history", _FILL_COLUMNS),
            [to_db(getattr(entry, column)) for column in _FILL_COLUMNS],
        )

    async def list_fill_history(self, container_id: str) -> list[FillHistoryEntry]:
        """查询指定目的容器的全部流水，按时间正序"""
        cursor = await self._conn.execute(
            """
            SELECT * FROM fill_history
            WHERE container_id = ?
            ORDER BY created_at, entry_id
            """,
            (container_id,),
        )
        rows = await cursor.fetchall()
        return [FillHistoryEntry.model_validate(row_to_dict(row)) for row in rows]

    async def sum_fill_by_container(self) -> dict[str, float]:
        """每个目的容器的流水合计（清空记录为负数，故合计即当前装载量）"""
        cursor = await self._conn.execute(
            """
            SELECT container_id, COALESCE(SUM(amount_added), 0) AS total
            FROM fill_history
            GROUP BY container_id
            """
        )
        rows = await cursor.fetchall()
        return {row["container_id"]: float(row["total"]) for row in rows}

    async def append_activity(self, entry: ActivityLogEntry) -> None:
        """追加审计记录（append-only）"""
        await self._conn.execute(
            insert_sql("activity_log", _ACTIVITY_COLUMNS),
            [to_db(getattr(entry, column)) for column in _ACTIVITY_COLUMNS],
        )

    async def list_activity(
        self,
        task_id: str | None = None,
        container_id: str | None = None,
        limit: int = 500,
    ) -> list[ActivityLogEntry]:
        """查询审计记录，按时间正序"""
        clauses: list[str] = []
        params: list[object] = []
        if task_id:
            clauses.append("task_id = ?")
            params.append(task_id)
        if container_id:
            clauses.append("container_id = ?")
            params.append(container_id)

        sql = "SELECT * FROM activity_log"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at, activity_id LIMIT ?"
        params.append(limit)

        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._row_to_activity(row) for row in rows]

    @staticmethod
    def _row_to_activity(row: aiosqlite.Row) -> ActivityLogEntry:
        data = row_to_dict(row)
        data["metadata"] = json.loads(data["metadata"] or "{}")
        return ActivityLogEntry.model_validate(data)
