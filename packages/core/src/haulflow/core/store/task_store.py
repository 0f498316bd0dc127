"""TaskStore SQLite 实现

tasks 表是任务的权威记录。所有状态变更都通过条件 UPDATE 完成：
WHERE 子句携带调用方读取时的状态（以及认领时的“无归属”条件），
由 rowcount 判断是否命中，避免先读后写的竞态。
"""

from datetime import datetime

import aiosqlite

from ..models.enums import TaskType
from ..models.task import Task
from .encoding import insert_sql, row_to_dict, to_db

_COLUMNS: list[str] = list(Task.model_fields)

# 允许通过 update_task_if_status 修改的列（主键与创建信息除外）
_MUTABLE_COLUMNS: frozenset[str] = frozenset(_COLUMNS) - {
    "task_id",
    "workflow",
    "task_type",
    "created_by",
    "created_at",
}


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        await self._conn.execute(
            insert_sql("tasks", _COLUMNS),
            [to_db(getattr(task, column)) for column in _COLUMNS],
        )

    async def insert_task_if_absent(self, task: Task) -> bool:
        """按 dedup_key 唯一约束插入任务

        去重键已存在时什么也不做，返回 False；插入成功返回 True。
        唯一性由数据库的部分唯一索引保证，而不是先查后插。
        """
        placeholders = ", ".join("?" for _ in _COLUMNS)
        cursor = await self._conn.execute(
            f"""
            INSERT INTO tasks ({", ".join(_COLUMNS)})
            VALUES ({placeholders})
            ON CONFLICT (dedup_key) WHERE dedup_key IS NOT NULL DO NOTHING
            """,
            [to_db(getattr(task, column)) for column in _COLUMNS],
        )
        return cursor.rowcount == 1

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        cursor = await self._conn.execute(
            "SELECT * FROM tasks WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def get_task_by_dedup_key(self, dedup_key: str) -> Task | None:
        cursor = await self._conn.execute(
            "SELECT * FROM tasks WHERE dedup_key = ?",
            (dedup_key,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_tasks(
        self,
        status: str | None = None,
        workflow: str | None = None,
        assigned_to: str | None = None,
        task_type: str | None = None,
        limit: int = 200,
    ) -> list[Task]:
        """查询任务列表，支持多条件筛选，按 created_at 倒序"""
        clauses: list[str] = []
        params: list[object] = []
        if status:
            clauses.append("status = ?")
            params.append(status)
        if workflow:
            clauses.append("workflow = ?")
            params.append(workflow)
        if assigned_to:
            # 负责人 = 认领者或指派对象
            clauses.append("(claimed_by_user_id = ? OR assigned_to = ?)")
            params.extend([assigned_to, assigned_to])
        if task_type:
            clauses.append("task_type = ?")
            params.append(task_type)

        sql = "SELECT * FROM tasks"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, task_id DESC LIMIT ?"
        params.append(limit)

        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def list_open_daily_tasks(self, open_status: str) -> list[Task]:
        """查询仍处于开放状态且无人认领的每日任务"""
        cursor = await self._conn.execute(
            """
            SELECT * FROM tasks
            WHERE task_type = ? AND status = ? AND dedup_key IS NOT NULL
              AND claimed_by_user_id IS NULL AND assigned_to IS NULL
            ORDER BY created_at
            """,
            (TaskType.DAILY_FULL.value, open_status),
        )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def update_task_if_status(
        self,
        task_id: str,
        expected_status: str,
        changes: dict[str, object],
        updated_at: datetime,
        require_unowned: bool = False,
    ) -> bool:
        """条件更新：仅当任务仍处于 expected_status 时写入 changes

        Args:
            task_id: 任务 ID
            expected_status: 调用方读取到的状态
            changes: 列名 -> 新值
            updated_at: 更新时间
            require_unowned: 额外要求 claimed_by_user_id 与 assigned_to 均为空（认领）

        Returns:
            True 表示命中并已写入；False 表示状态或归属已被并发修改
        """
        unknown = set(changes) - _MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"cannot update task columns: {sorted(unknown)}")

        assignments = [f"{column} = ?" for column in changes] + ["updated_at = ?"]
        params = [to_db(value) for value in changes.values()]
        params += [to_db(updated_at), task_id, expected_status]

        sql = f"UPDATE tasks SET {', '.join(assignments)} WHERE task_id = ? AND status = ?"
        if require_unowned:
            sql += " AND claimed_by_user_id IS NULL AND assigned_to IS NULL"

        cursor = await self._conn.execute(sql, params)
        return cursor.rowcount == 1

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        return Task.model_validate(row_to_dict(row))
