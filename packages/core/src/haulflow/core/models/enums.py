"""枚举定义

包含两套任务状态机（legacy / automotive）的状态枚举、工作流族判别值、
任务类型、用户角色、审计类型等。合法流转表见 workflow.py。
"""

from enum import StrEnum


class WorkflowFamily(StrEnum):
    """工作流族 -- 决定任务使用哪张流转表"""

    LEGACY = "legacy"
    AUTOMOTIVE = "automotive"


class LegacyStatus(StrEnum):
    """Legacy 工作流状态（8 态）"""

    PLANNED = "PLANNED"
    ASSIGNED = "ASSIGNED"
    ACCEPTED = "ACCEPTED"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    # 终态
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class AutomotiveStatus(StrEnum):
    """Automotive 工作流状态（7 态 + 取消）"""

    OPEN = "OPEN"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"
    DROPPED_OFF = "DROPPED_OFF"
    TAKEN_OVER = "TAKEN_OVER"
    WEIGHED = "WEIGHED"
    # 终态
    DISPOSED = "DISPOSED"
    CANCELLED = "CANCELLED"


class TaskType(StrEnum):
    """任务来源类型"""

    MANUAL = "MANUAL"
    DAILY_FULL = "DAILY_FULL"


class UserRole(StrEnum):
    """调用者角色"""

    ADMIN = "ADMIN"
    DRIVER = "DRIVER"


class Priority(StrEnum):
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class BoxStatus(StrEnum):
    """运输箱状态"""

    AVAILABLE = "AVAILABLE"
    IN_USE = "IN_USE"


class ActivityType(StrEnum):
    """审计日志类型"""

    TASK_CREATED = "TASK_CREATED"
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_CLAIMED = "TASK_CLAIMED"
    TASK_ACCEPTED = "TASK_ACCEPTED"
    TASK_PICKED_UP = "TASK_PICKED_UP"
    TASK_IN_TRANSIT = "TASK_IN_TRANSIT"
    TASK_DELIVERED = "TASK_DELIVERED"
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_CANCELLED = "TASK_CANCELLED"
    TASK_HANDOVER = "TASK_HANDOVER"
    STATUS_CHANGED = "STATUS_CHANGED"
    WEIGHT_RECORDED = "WEIGHT_RECORDED"
    CONTAINER_FILLED = "CONTAINER_FILLED"
    CONTAINER_RESET = "CONTAINER_RESET"
    BOX_RELEASED = "BOX_RELEASED"
    SYSTEM_EVENT = "SYSTEM_EVENT"
