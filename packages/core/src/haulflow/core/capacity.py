"""Capacity Guard -- 物料匹配与剩余容量校验

纯函数：不做 I/O，不抛业务异常，只返回 CapacityDecision。
转移流程中调用两次：提前的建议性检查（给前端反馈）与提交前的权威检查。
物料不匹配优先于容量判断。
"""

from dataclasses import dataclass
from enum import StrEnum

from .models.container import DestinationContainer


class CapacityRejection(StrEnum):
    MATERIAL_MISMATCH = "material_mismatch"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    INVALID_AMOUNT = "invalid_amount"
    CONTAINER_INACTIVE = "container_inactive"


@dataclass(frozen=True)
class CapacityDecision:
    """容量校验结果，携带调用方自我修正所需的全部数值"""

    allowed: bool
    source_material: str
    destination_material: str
    requested_amount: float
    remaining_capacity: float
    unit: str
    reason: CapacityRejection | None = None

    def __bool__(self) -> bool:
        return self.allowed


def check_transfer(
    source_material: str,
    destination: DestinationContainer,
    amount: float,
) -> CapacityDecision:
    """检查 amount 的 source_material 能否放入 destination

    Args:
        source_material: 来源物料类型
        destination: 目的容器（current_amount 为调用时读取到的值）
        amount: 计划转移数量

    Returns:
        CapacityDecision
    """

    def decide(reason: CapacityRejection | None) -> CapacityDecision:
        return CapacityDecision(
            allowed=reason is None,
            source_material=source_material,
            destination_material=destination.material_type,
            requested_amount=amount,
            remaining_capacity=destination.remaining_capacity,
            unit=destination.quantity_unit,
            reason=reason,
        )

    if destination.material_type != source_material:
        return decide(CapacityRejection.MATERIAL_MISMATCH)
    if not destination.is_active:
        return decide(CapacityRejection.CONTAINER_INACTIVE)
    if amount < 0:
        return decide(CapacityRejection.INVALID_AMOUNT)
    if amount > destination.remaining_capacity:
        return decide(CapacityRejection.CAPACITY_EXCEEDED)
    return decide(None)
