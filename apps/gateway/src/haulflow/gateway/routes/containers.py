"""目的容器路由

GET /api/containers/{container_id}: 容器详情（含剩余容量）
GET /api/containers/{container_id}/history: 装载量流水
POST /api/containers/{container_id}/reset: 清空（管理员）
"""

from fastapi import APIRouter, Depends
from haulflow.core.models import Actor, DestinationContainer, FillHistoryEntry
from pydantic import BaseModel

from ..deps import get_actor, get_container_service
from ..services.container_service import ContainerService

router = APIRouter()


class ContainerResponse(BaseModel):
    container: DestinationContainer
    remaining_capacity: float
    already_done: bool = False


class FillHistoryResponse(BaseModel):
    container_id: str
    entries: list[FillHistoryEntry]


def _container_response(
    container: DestinationContainer, already_done: bool = False
) -> ContainerResponse:
    return ContainerResponse(
        container=container,
        remaining_capacity=container.remaining_capacity,
        already_done=already_done,
    )


@router.get("/api/containers/{container_id}", response_model=ContainerResponse)
async def get_container(
    container_id: str,
    _actor: Actor = Depends(get_actor),
    service: ContainerService = Depends(get_container_service),
):
    return _container_response(await service.get_container(container_id))


@router.get("/api/containers/{container_id}/history", response_model=FillHistoryResponse)
async def get_fill_history(
    container_id: str,
    _actor: Actor = Depends(get_actor),
    service: ContainerService = Depends(get_container_service),
):
    entries = await service.fill_history(container_id)
    return FillHistoryResponse(container_id=container_id, entries=entries)


@router.post("/api/containers/{container_id}/reset", response_model=ContainerResponse)
async def reset_container(
    container_id: str,
    actor: Actor = Depends(get_actor),
    service: ContainerService = Depends(get_container_service),
):
    """清空容器：追加负数流水，current_amount 归零"""
    container, already_done = await service.reset_container(actor, container_id)
    return _container_response(container, already_done)
