"""任务生命周期路由

所有操作都可安全重试：效果已达成时返回 200 + already_done=true 与当前任务。
- 404: 任务/容器不存在
- 403: 缺少角色或归属
- 409: 非法流转（携带 current_status / requested_status）或已被他人认领
- 422: 物料不匹配 / 容量不足（携带数值细节）
"""

from fastapi import APIRouter, Depends
from haulflow.core.models import Actor
from pydantic import BaseModel, Field

from ..deps import get_actor, get_task_service
from ..services.task_service import TaskService
from .tasks import TaskEnvelope, to_envelope

router = APIRouter()


class DeliverRequest(BaseModel):
    measured_weight: float | None = Field(default=None, ge=0)
    destination_container_id: str | None = None


class CancelRequest(BaseModel):
    reason: str | None = None


class HandoverRequest(BaseModel):
    new_owner_id: str = Field(min_length=1)


class StatusRequest(BaseModel):
    status: str = Field(min_length=1)
    weight: float | None = Field(default=None, ge=0)
    destination_container_id: str | None = None
    reason: str | None = None


class WeighDisposeRequest(BaseModel):
    weight: float | None = Field(default=None, ge=0)
    destination_container_id: str | None = None


@router.post("/api/tasks/{task_id}/claim", response_model=TaskEnvelope)
async def claim_task(
    task_id: str,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    """认领无归属任务；已被他人认领时 409 并返回认领者"""
    return to_envelope(await service.claim_task(actor, task_id))


@router.post("/api/tasks/{task_id}/accept", response_model=TaskEnvelope)
async def accept_task(
    task_id: str,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    return to_envelope(await service.accept_task(actor, task_id))


@router.post("/api/tasks/{task_id}/pickup", response_model=TaskEnvelope)
async def pickup_task(
    task_id: str,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    return to_envelope(await service.pickup_task(actor, task_id))


@router.post("/api/tasks/{task_id}/deliver", response_model=TaskEnvelope)
async def deliver_task(
    task_id: str,
    body: DeliverRequest | None = None,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    """送达并完成，写入目的容器装载量"""
    body = body or DeliverRequest()
    result = await service.deliver_task(
        actor,
        task_id,
        measured_weight=body.measured_weight,
        destination_container_id=body.destination_container_id,
    )
    return to_envelope(result)


@router.post("/api/tasks/{task_id}/cancel", response_model=TaskEnvelope)
async def cancel_task(
    task_id: str,
    body: CancelRequest | None = None,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    reason = body.reason if body else None
    return to_envelope(await service.cancel_task(actor, task_id, reason))


@router.post("/api/tasks/{task_id}/handover", response_model=TaskEnvelope)
async def handover_task(
    task_id: str,
    body: HandoverRequest,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    return to_envelope(await service.handover_task(actor, task_id, body.new_owner_id))


@router.post("/api/tasks/{task_id}/status", response_model=TaskEnvelope)
async def set_status(
    task_id: str,
    body: StatusRequest,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    """automotive 通用状态入口"""
    result = await service.set_status(
        actor,
        task_id,
        body.status,
        weight=body.weight,
        destination_container_id=body.destination_container_id,
        reason=body.reason,
    )
    return to_envelope(result)


@router.post("/api/tasks/{task_id}/weigh-dispose", response_model=TaskEnvelope)
async def weigh_and_dispose(
    task_id: str,
    body: WeighDisposeRequest | None = None,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    body = body or WeighDisposeRequest()
    result = await service.weigh_and_dispose(
        actor,
        task_id,
        weight=body.weight,
        destination_container_id=body.destination_container_id,
    )
    return to_envelope(result)
