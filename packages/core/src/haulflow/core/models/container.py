"""Container Domain Models

来源容器（客户侧）只记录物料与最近清空时间；
目的容器（仓库侧）维护 current_amount，不变式 0 <= current_amount <= max_capacity。
current_amount 是 fill_history 流水的缓存投影。
"""

from datetime import datetime

from pydantic import BaseModel, Field


class SourceContainer(BaseModel):
    """来源容器（客户侧）"""

    container_id: str = Field(description="容器 ID")
    label: str = Field(default="", description="名称/客户")
    location: str = Field(default="", description="位置描述")
    material_type: str = Field(description="物料类型")
    last_emptied_at: datetime | None = Field(default=None, description="最近清空时间")
    is_active: bool = Field(default=True)
    created_at: datetime
    updated_at: datetime


class DestinationContainer(BaseModel):
    """目的容器（仓库侧，有容量上限）"""

    container_id: str = Field(description="容器 ID")
    location: str = Field(default="", description="位置描述")
    material_type: str = Field(description="物料类型")
    current_amount: float = Field(default=0.0, ge=0, description="当前装载量")
    max_capacity: float = Field(gt=0, description="最大容量")
    quantity_unit: str = Field(default="kg", description="计量单位")
    last_emptied_at: datetime | None = Field(default=None, description="最近清空时间")
    is_active: bool = Field(default=True)
    created_at: datetime
    updated_at: datetime

    @property
    def remaining_capacity(self) -> float:
        return self.max_capacity - self.current_amount
