"""审计流水 Domain Models

fill_history 与 activity_log 都是 append-only：只允许插入，不允许更新或删除。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import ActivityType


class FillHistoryEntry(BaseModel):
    """目的容器装载量流水（带符号）"""

    entry_id: str = Field(description="唯一标识，ULID 格式")
    container_id: str = Field(description="目的容器 ID")
    amount_added: float = Field(description="变化量，清空记为负数")
    unit: str = Field(default="kg")
    task_id: str | None = Field(default=None, description="关联任务")
    is_reset: bool = Field(default=False, description="是否为清空记录")
    recorded_by: str = Field(description="记录人")
    created_at: datetime


class ActivityLogEntry(BaseModel):
    """状态变更审计记录"""

    activity_id: str = Field(description="唯一标识，ULID 格式")
    type: ActivityType
    message: str = Field(default="", description="可读描述")
    user_id: str | None = Field(default=None, description="操作者")
    task_id: str | None = None
    container_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, description="结构化细节")
    created_at: datetime
