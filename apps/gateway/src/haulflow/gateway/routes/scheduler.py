"""每日任务生成路由（管理员）

POST /api/admin/daily-tasks/generate: 立即运行一次生成，与定时器使用同一算法
GET /api/admin/daily-tasks/status: 调度器状态与上次运行报告
"""

from datetime import datetime

from fastapi import APIRouter, Depends
from haulflow.core.exceptions import ForbiddenError
from haulflow.core.models import Actor
from pydantic import BaseModel

from ..deps import get_actor, get_scheduler
from ..services.daily_scheduler import DailyGenerationReport, DailyScheduler

router = APIRouter()


class SchedulerStatus(BaseModel):
    running: bool
    timezone: str
    interval_s: float
    today: str
    last_run_at: datetime | None
    last_report: DailyGenerationReport | None


def _require_admin(actor: Actor) -> None:
    if not actor.is_active or not actor.is_admin:
        raise ForbiddenError("Administrator role required", user_id=actor.user_id)


@router.post("/api/admin/daily-tasks/generate", response_model=DailyGenerationReport)
async def generate_daily_tasks(
    actor: Actor = Depends(get_actor),
    scheduler: DailyScheduler = Depends(get_scheduler),
):
    _require_admin(actor)
    return await scheduler.run_once(trigger="manual")


@router.get("/api/admin/daily-tasks/status", response_model=SchedulerStatus)
async def scheduler_status(
    actor: Actor = Depends(get_actor),
    scheduler: DailyScheduler = Depends(get_scheduler),
):
    _require_admin(actor)
    return SchedulerStatus(
        running=scheduler.running,
        timezone=scheduler.config.timezone,
        interval_s=scheduler.config.interval_s,
        today=scheduler.today().isoformat(),
        last_run_at=scheduler.last_run_at,
        last_report=scheduler.last_report,
    )
