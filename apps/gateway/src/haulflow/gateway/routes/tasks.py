"""任务路由 -- 创建、指派与查询

POST /api/tasks: 新建任务（管理员）
POST /api/tasks/{task_id}/assign: 指派（管理员，legacy）
GET /api/tasks: 任务列表，支持 status / workflow / assigned_to / task_type 筛选
GET /api/tasks/{task_id}: 任务详情，含来源/目的容器
GET /api/tasks/{task_id}/activity: 任务审计记录
"""

from fastapi import APIRouter, Depends, Query
from haulflow.core.models import (
    ActivityLogEntry,
    Actor,
    DestinationContainer,
    FillHistoryEntry,
    SourceContainer,
    Task,
)
from pydantic import BaseModel, Field

from ..deps import get_actor, get_task_service
from ..services.task_service import TaskDraft, TaskResult, TaskService

router = APIRouter()


class TaskEnvelope(BaseModel):
    """单任务响应：任务 + 幂等标记 + 关联容器"""

    task: Task
    already_done: bool = False
    source_container: SourceContainer | None = None
    destination_container: DestinationContainer | None = None
    fill_entry: FillHistoryEntry | None = None


class TaskListResponse(BaseModel):
    tasks: list[Task]


class ActivityListResponse(BaseModel):
    activity: list[ActivityLogEntry]


class AssignRequest(BaseModel):
    user_id: str = Field(min_length=1)


def to_envelope(result: TaskResult) -> TaskEnvelope:
    return TaskEnvelope(
        task=result.task,
        already_done=result.already_done,
        source_container=result.source_container,
        destination_container=result.destination_container,
        fill_entry=result.fill_entry,
    )


@router.post("/api/tasks", status_code=201, response_model=TaskEnvelope)
async def create_task(
    draft: TaskDraft,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    """新建任务，归属字段始终为空"""
    return to_envelope(await service.create_task(actor, draft))


@router.get("/api/tasks", response_model=TaskListResponse)
async def list_tasks(
    status: str | None = Query(default=None, description="按状态筛选"),
    workflow: str | None = Query(default=None, description="按工作流族筛选"),
    assigned_to: str | None = Query(default=None, description="按负责人筛选"),
    task_type: str | None = Query(default=None, description="MANUAL / DAILY_FULL"),
    limit: int = Query(default=200, ge=1, le=1000),
    _actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    """查询任务列表，按 created_at 倒序"""
    tasks = await service.list_tasks(
        status=status,
        workflow=workflow,
        assigned_to=assigned_to,
        task_type=task_type,
        limit=limit,
    )
    return TaskListResponse(tasks=tasks)


@router.get("/api/tasks/{task_id}", response_model=TaskEnvelope)
async def get_task_detail(
    task_id: str,
    _actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    return to_envelope(await service.get_task(task_id))


@router.get("/api/tasks/{task_id}/activity", response_model=ActivityListResponse)
async def get_task_activity(
    task_id: str,
    _actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    return ActivityListResponse(activity=await service.list_activity(task_id))


@router.post("/api/tasks/{task_id}/assign", response_model=TaskEnvelope)
async def assign_task(
    task_id: str,
    body: AssignRequest,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    """管理员指派：PLANNED -> ASSIGNED"""
    return to_envelope(await service.assign_task(actor, task_id, body.user_id))

