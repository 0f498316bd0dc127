"""Stand / Box Domain Models

Stand 是固定的周期性取货点，由配置创建；调度器只会写 last_daily_task_generated_at。
Box 是承运箱，automotive 任务进入终态时释放回未分配状态。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import BoxStatus


class Stand(BaseModel):
    """固定取货点"""

    stand_id: str = Field(description="取货点 ID")
    identifier: str = Field(default="", description="现场标识")
    material_type: str = Field(description="物料类型")
    daily_full: bool = Field(default=False, description="是否每天生成一个满载任务")
    is_active: bool = Field(default=True)
    source_container_id: str | None = Field(default=None, description="关联的来源容器")
    destination_container_id: str | None = Field(default=None, description="默认目的容器")
    last_daily_task_generated_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class Box(BaseModel):
    """承运箱"""

    box_id: str = Field(description="箱 ID")
    label: str = Field(default="")
    status: BoxStatus = Field(default=BoxStatus.AVAILABLE)
    current_task_id: str | None = Field(default=None, description="当前承运的任务")
    updated_at: datetime
