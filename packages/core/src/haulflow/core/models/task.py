"""Task Domain Model

一个 Task 表示把物料从来源位置运送到目的容器的一次取送作业。
workflow 判别值决定 status 的取值范围与适用的流转表。
终态任务除审计字段外不允许再修改。
"""

from datetime import date, datetime

from pydantic import BaseModel, Field, model_validator

from .enums import Priority, TaskType, WorkflowFamily
from .workflow import get_workflow


class Task(BaseModel):
    """Task 数据模型"""

    task_id: str = Field(description="唯一标识，ULID 格式")
    workflow: WorkflowFamily = Field(description="工作流族判别值")
    task_type: TaskType = Field(default=TaskType.MANUAL, description="任务来源类型")
    status: str = Field(default="", description="当前状态，取值由 workflow 决定")
    title: str = Field(default="", description="任务标题")
    description: str | None = Field(default=None, description="任务描述")
    priority: Priority = Field(default=Priority.NORMAL, description="优先级")

    # 物料与数量
    material_type: str = Field(description="物料类型")
    planned_quantity: float | None = Field(default=None, ge=0, description="计划数量")
    quantity_unit: str = Field(default="kg", description="计量单位")
    estimated_amount: float | None = Field(default=None, ge=0, description="估计数量")
    actual_quantity: float | None = Field(default=None, description="实际转移数量，完成时写入")
    measured_weight: float | None = Field(default=None, description="称重结果，完成时写入")

    # 关联
    source_container_id: str | None = Field(default=None, description="来源容器")
    destination_container_id: str | None = Field(default=None, description="目的容器")
    stand_id: str | None = Field(default=None, description="固定取货点（每日任务）")
    box_id: str | None = Field(default=None, description="承运箱")

    # 调度元数据
    scheduled_for: date | None = Field(default=None, description="计划日期（每日任务）")
    dedup_key: str | None = Field(default=None, description="去重键，非空时全局唯一")

    # 归属
    assigned_to: str | None = Field(default=None, description="指派/负责用户")
    claimed_by_user_id: str | None = Field(default=None, description="认领用户")
    claimed_at: datetime | None = None
    handover_at: datetime | None = None

    # 各状态时间戳
    assigned_at: datetime | None = None
    accepted_at: datetime | None = None
    picked_up_at: datetime | None = None
    in_transit_at: datetime | None = None
    dropped_off_at: datetime | None = None
    taken_over_at: datetime | None = None
    weighed_at: datetime | None = None
    delivered_at: datetime | None = None
    completed_at: datetime | None = None
    disposed_at: datetime | None = None
    cancelled_at: datetime | None = None

    # 审计字段
    cancellation_reason: str | None = None
    created_by: str | None = None
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")

    @model_validator(mode="after")
    def _normalize_status(self) -> "Task":
        workflow = get_workflow(self.workflow)
        self.status = str(workflow.normalize(self.status or workflow.open_status))
        return self

    @property
    def owner_id(self) -> str | None:
        """当前负责人：认领者优先，其次指派对象"""
        return self.claimed_by_user_id or self.assigned_to

    @property
    def is_terminal(self) -> bool:
        return get_workflow(self.workflow).is_terminal(self.status)

    def transfer_quantity(self) -> float | None:
        """转移数量：实测 > 计划 > 估计"""
        for value in (self.measured_weight, self.planned_quantity, self.estimated_amount):
            if value is not None:
                return value
        return None
