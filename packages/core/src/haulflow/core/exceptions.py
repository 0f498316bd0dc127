"""HaulFlow 异常体系

NotFound / Forbidden / Conflict / ValidationFailed 对应调用方可感知的业务错误；
TaskStatusConflictError、TransferRejectedError 只在事务内部抛出用于回滚，
由服务层翻译成上面的业务错误。
基础设施故障（数据库不可达等）不在此体系内，原样向上传播。
"""

from typing import Any

from .capacity import CapacityDecision, CapacityRejection


class HaulFlowError(Exception):
    """业务错误基类"""

    code: str = "HAULFLOW_ERROR"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class UnauthenticatedError(HaulFlowError):
    code = "UNAUTHENTICATED"


class NotFoundError(HaulFlowError):
    """任务/容器/取货点不存在"""

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} with id {entity_id} does not exist", id=entity_id)
        self.kind = kind
        self.code = f"{kind.upper()}_NOT_FOUND"


class ForbiddenError(HaulFlowError):
    """调用者缺少角色或归属权"""

    code = "FORBIDDEN"


class ConflictError(HaulFlowError):
    code = "CONFLICT"


class TransitionConflictError(ConflictError):
    """非法状态流转，携带当前状态与请求状态"""

    code = "INVALID_TRANSITION"

    def __init__(self, current_status: str, requested_status: str) -> None:
        super().__init__(
            f"Cannot transition from {current_status} to {requested_status}",
            current_status=current_status,
            requested_status=requested_status,
        )
        self.current_status = current_status
        self.requested_status = requested_status


class AlreadyClaimedError(ConflictError):
    """任务已被他人认领"""

    code = "TASK_ALREADY_CLAIMED"

    def __init__(self, task_id: str, claimed_by_user_id: str | None) -> None:
        super().__init__(
            f"Task {task_id} is already claimed",
            claimed_by_user_id=claimed_by_user_id,
        )
        self.claimed_by_user_id = claimed_by_user_id


class ValidationFailedError(HaulFlowError):
    code = "VALIDATION_FAILED"


class MaterialMismatchError(ValidationFailedError):
    code = "MATERIAL_MISMATCH"

    def __init__(self, decision: CapacityDecision) -> None:
        super().__init__(
            f"Material {decision.source_material} cannot go into a "
            f"{decision.destination_material} container",
            source_material=decision.source_material,
            destination_material=decision.destination_material,
        )


class CapacityExceededError(ValidationFailedError):
    code = "CAPACITY_EXCEEDED"

    def __init__(self, decision: CapacityDecision) -> None:
        super().__init__(
            f"Requested {decision.requested_amount} {decision.unit} exceeds remaining "
            f"capacity {decision.remaining_capacity} {decision.unit}",
            remaining_capacity=decision.remaining_capacity,
            requested_amount=decision.requested_amount,
            unit=decision.unit,
        )


class QuantityRequiredError(ValidationFailedError):
    code = "QUANTITY_REQUIRED"


class TaskStatusConflictError(Exception):
    """条件更新未命中（状态或归属已被并发修改），用于回滚事务"""

    def __init__(self, task_id: str, expected_status: str) -> None:
        super().__init__(f"task {task_id} is no longer in status {expected_status}")
        self.task_id = task_id
        self.expected_status = expected_status


class TransferRejectedError(Exception):
    """提交时的权威容量检查失败，用于回滚事务"""

    def __init__(self, container_id: str, decision: CapacityDecision | None) -> None:
        super().__init__(f"transfer into {container_id} rejected")
        self.container_id = container_id
        self.decision = decision


def capacity_error(decision: CapacityDecision) -> ValidationFailedError:
    """将 Capacity Guard 的拒绝结果翻译为业务错误"""
    if decision.reason == CapacityRejection.MATERIAL_MISMATCH:
        return MaterialMismatchError(decision)
    if decision.reason == CapacityRejection.CAPACITY_EXCEEDED:
        return CapacityExceededError(decision)
    return ValidationFailedError(
        f"Transfer rejected: {decision.reason}",
        reason=str(decision.reason),
        requested_amount=decision.requested_amount,
        remaining_capacity=decision.remaining_capacity,
        unit=decision.unit,
    )
