"""HaulFlow Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .actor import Actor
from .container import DestinationContainer, SourceContainer
from .enums import (
    ActivityType,
    AutomotiveStatus,
    BoxStatus,
    LegacyStatus,
    Priority,
    TaskType,
    UserRole,
    WorkflowFamily,
)
from .ledger import ActivityLogEntry, FillHistoryEntry
from .stand import Box, Stand
from .task import Task
from .workflow import (
    AUTOMOTIVE_WORKFLOW,
    LEGACY_WORKFLOW,
    WORKFLOWS,
    TransitionDecision,
    TransitionRejection,
    Workflow,
    get_workflow,
    validate_transition,
)

__all__ = [
    # 枚举
    "WorkflowFamily",
    "LegacyStatus",
    "AutomotiveStatus",
    "TaskType",
    "UserRole",
    "Priority",
    "BoxStatus",
    "ActivityType",
    # 状态机
    "Workflow",
    "WORKFLOWS",
    "LEGACY_WORKFLOW",
    "AUTOMOTIVE_WORKFLOW",
    "TransitionDecision",
    "TransitionRejection",
    "get_workflow",
    "validate_transition",
    # 实体
    "Task",
    "SourceContainer",
    "DestinationContainer",
    "Stand",
    "Box",
    "FillHistoryEntry",
    "ActivityLogEntry",
    "Actor",
]
