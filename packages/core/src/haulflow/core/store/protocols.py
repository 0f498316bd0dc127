"""Store Protocol 接口定义

定义 TaskStore、ContainerStore、StandStore、LedgerStore 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from datetime import datetime
from typing import Protocol

from ..models.container import DestinationContainer, SourceContainer
from ..models.ledger import ActivityLogEntry, FillHistoryEntry
from ..models.stand import Box, Stand
from ..models.task import Task


class TaskStore(Protocol):
    """Task 存储接口"""

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        ...

    async def insert_task_if_absent(self, task: Task) -> bool:
        """按 dedup_key 插入，已存在时返回 False"""
        ...

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        ...

    async def get_task_by_dedup_key(self, dedup_key: str) -> Task | None: ...

    async def list_tasks(
        self,
        status: str | None = None,
        workflow: str | None = None,
        assigned_to: str | None = None,
        task_type: str | None = None,
        limit: int = 200,
    ) -> list[Task]:
        """查询任务列表，支持多条件筛选"""
        ...

    async def list_open_daily_tasks(self, open_status: str) -> list[Task]:
        """仍处于开放状态且无人认领的每日任务"""
        ...

    async def update_task_if_status(
        self,
        task_id: str,
        expected_status: str,
        changes: dict[str, object],
        updated_at: datetime,
        require_unowned: bool = False,
    ) -> bool:
        """条件更新，返回是否命中"""
        ...


class ContainerStore(Protocol):
    """容器存储接口"""

    async def create_source_container(self, container: SourceContainer) -> None: ...

    async def create_destination_container(self, container: DestinationContainer) -> None: ...

    async def get_source_container(self, container_id: str) -> SourceContainer | None: ...

    async def get_destination_container(
        self, container_id: str
    ) -> DestinationContainer | None: ...

    async def apply_transfer(
        self,
        container_id: str,
        material_type: str,
        amount: float,
        updated_at: datetime,
    ) -> bool:
        """原子地检查并累加目的容器装载量"""
        ...

    async def reset_destination(
        self,
        container_id: str,
        expected_amount: float,
        emptied_at: datetime,
    ) -> bool: ...

    async def mark_source_emptied(self, container_id: str, emptied_at: datetime) -> None: ...

    async def list_destination_containers(self) -> list[DestinationContainer]: ...

    async def set_current_amount(
        self,
        container_id: str,
        amount: float,
        updated_at: datetime,
    ) -> None:
        """覆盖缓存的装载量（流水重建）"""
        ...


class StandStore(Protocol):
    """取货点/承运箱存储接口"""

    async def create_stand(self, stand: Stand) -> None: ...

    async def get_stand(self, stand_id: str) -> Stand | None: ...

    async def list_daily_stands(self) -> list[Stand]: ...

    async def mark_daily_generated(self, stand_id: str, generated_at: datetime) -> None: ...

    async def create_box(self, box: Box) -> None: ...

    async def get_box(self, box_id: str) -> Box | None: ...

    async def occupy_box(self, box_id: str, task_id: str, updated_at: datetime) -> bool:
        """绑定空闲承运箱，箱子被其他任务占用时返回 False"""
        ...

    async def release_box(self, box_id: str, task_id: str, updated_at: datetime) -> bool: ...


class LedgerStore(Protocol):
    """审计流水存储接口

    fill_history 与 activity_log 均为 append-only：只允许插入，不允许更新或删除。
    """

    async def append_fill(self, entry: FillHistoryEntry) -> None:
        """追加装载量流水"""
        ...

    async def list_fill_history(self, container_id: str) -> list[FillHistoryEntry]: ...

    async def sum_fill_by_container(self) -> dict[str, float]: ...

    async def append_activity(self, entry: ActivityLogEntry) -> None:
        """追加审计记录"""
        ...

    async def list_activity(
        self,
        task_id: str | None = None,
        container_id: str | None = None,
        limit: int = 500,
    ) -> list[ActivityLogEntry]: ...
