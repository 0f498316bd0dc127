"""DailyScheduler -- 每日满载任务生成

每次运行：
1. 按固定时区计算“今天”的日期字符串
2. 取消去重键不以今天结尾、仍处于 OPEN 的每日任务（被新一天的生成取代）
3. 对每个启用且 daily_full 的取货点，按 "<prefix>:<stand_id>:<today>" 插入任务；
   去重键已存在（并发运行、手动触发与定时器重叠）时视为他人已完成，静默跳过
4. 汇总 created / skipped / cancelled_previous

定时器在应用启动后延迟 initial_delay_s 首次运行，此后每 interval_s 运行一次；
管理员手动触发走同一个 run_once()。
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, date, datetime

import structlog
from haulflow.core.config import SYSTEM_ACTOR_ID, SchedulerConfig
from haulflow.core.exceptions import TaskStatusConflictError
from haulflow.core.models import (
    ActivityLogEntry,
    ActivityType,
    AutomotiveStatus,
    Stand,
    Task,
    TaskType,
    WorkflowFamily,
)
from haulflow.core.store import StoreGroup, apply_task_change
from pydantic import BaseModel, Field
from ulid import ULID

SUPERSEDED_REASON = "superseded by new daily generation"


class GeneratedTask(BaseModel):
    task_id: str
    stand_id: str
    dedup_key: str


class SkippedStand(BaseModel):
    stand_id: str
    dedup_key: str


class DailyGenerationReport(BaseModel):
    """单次生成的结果汇总"""

    today: date
    trigger: str = "manual"
    created_count: int = 0
    skipped_count: int = 0
    cancelled_previous_count: int = 0
    created: list[GeneratedTask] = Field(default_factory=list)
    skipped: list[SkippedStand] = Field(default_factory=list)
    cancelled_task_ids: list[str] = Field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DailyScheduler:
    """每日任务调度器 -- 由应用 lifespan 启停，实例通过 app.state 注入"""

    def __init__(
        self,
        store_group: StoreGroup,
        config: SchedulerConfig,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._stores = store_group
        self._config = config
        self._clock = clock
        self._running: bool = False
        self._task: asyncio.Task[None] | None = None
        self._last_run_at: datetime | None = None
        self._last_report: DailyGenerationReport | None = None
        self._log = structlog.get_logger().bind(service="daily_scheduler")

    @property
    def running(self) -> bool:
        return self._running

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @property
    def last_run_at(self) -> datetime | None:
        return self._last_run_at

    @property
    def last_report(self) -> DailyGenerationReport | None:
        return self._last_report

    def today(self) -> date:
        """固定时区下的今天，与服务器本地时区无关"""
        return self._clock().astimezone(self._config.tzinfo).date()

    async def start(self) -> None:
        """启动定时循环；重复调用无副作用"""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        self._log.info(
            "daily_scheduler_started",
            initial_delay_s=self._config.initial_delay_s,
            interval_s=self._config.interval_s,
            timezone=self._config.timezone,
        )

    async def stop(self) -> None:
        """取消定时循环并等待其结束；未启动时调用无副作用"""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._log.info("daily_scheduler_stopped")

    async def _run_loop(self) -> None:
        """定时循环：失败只记录日志，下一轮照常运行"""
        await asyncio.sleep(self._config.initial_delay_s)
        while self._running:
            try:
                await self.run_once(trigger="timer")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._log.error(
                    "daily_generation_failed",
                    error_type=type(e).__name__,
                    error=str(e),
                )
            await asyncio.sleep(self._config.interval_s)

    async def run_once(self, trigger: str = "manual") -> DailyGenerationReport:
        """执行一次生成

        Args:
            trigger: 触发来源（timer / manual），仅用于日志与报告

        Returns:
            DailyGenerationReport
        """
        now = self._clock()
        today = self.today()
        report = DailyGenerationReport(today=today, trigger=trigger)

        await self._cancel_stale(today, now, report)

        stands = await self._stores.stand_store.list_daily_stands()
        for stand in stands:
            await self._generate_for_stand(stand, today, now, report)

        self._last_run_at = now
        self._last_report = report
        self._log.info(
            "daily_generation_completed",
            trigger=trigger,
            today=today.isoformat(),
            created_count=report.created_count,
            skipped_count=report.skipped_count,
            cancelled_previous_count=report.cancelled_previous_count,
        )
        return report

    def dedup_key(self, stand_id: str, today: date) -> str:
        return f"{self._config.key_prefix}:{stand_id}:{today.isoformat()}"

    async def _cancel_stale(
        self, today: date, now: datetime, report: DailyGenerationReport
    ) -> None:
        suffix = f":{today.isoformat()}"
        open_tasks = await self._stores.task_store.list_open_daily_tasks(AutomotiveStatus.OPEN)
        for task in open_tasks:
            if task.dedup_key is None or task.dedup_key.endswith(suffix):
                continue
            try:
                async with self._stores.atomic() as stores:
                    await apply_task_change(
                        stores,
                        task.task_id,
                        AutomotiveStatus.OPEN,
                        {
                            "status": AutomotiveStatus.CANCELLED,
                            "cancelled_at": now,
                            "cancellation_reason": SUPERSEDED_REASON,
                        },
                        now,
                        require_unowned=True,
                    )
                    await stores.ledger_store.append_activity(
                        ActivityLogEntry(
                            activity_id=str(ULID()),
                            type=ActivityType.TASK_CANCELLED,
                            message=f"Daily task cancelled: {SUPERSEDED_REASON}",
                            user_id=SYSTEM_ACTOR_ID,
                            task_id=task.task_id,
                            metadata={
                                "reason": SUPERSEDED_REASON,
                                "dedup_key": task.dedup_key,
                                "stand_id": task.stand_id,
                            },
                            created_at=now,
                        )
                    )
            except TaskStatusConflictError:
                # 期间被认领、推进或被并发运行取消
                self._log.debug("stale_daily_task_changed", task_id=task.task_id)
                continue
            report.cancelled_previous_count += 1
            report.cancelled_task_ids.append(task.task_id)

    async def _generate_for_stand(
        self,
        stand: Stand,
        today: date,
        now: datetime,
        report: DailyGenerationReport,
    ) -> None:
        dedup_key = self.dedup_key(stand.stand_id, today)
        task = Task(
            task_id=str(ULID()),
            workflow=WorkflowFamily.AUTOMOTIVE,
            task_type=TaskType.DAILY_FULL,
            status=AutomotiveStatus.OPEN,
            title=f"Daily full pickup {stand.identifier or stand.stand_id}",
            material_type=stand.material_type,
            source_container_id=stand.source_container_id,
            destination_container_id=stand.destination_container_id,
            stand_id=stand.stand_id,
            scheduled_for=today,
            dedup_key=dedup_key,
            created_by=SYSTEM_ACTOR_ID,
            created_at=now,
            updated_at=now,
        )

        async with self._stores.atomic() as stores:
            created = await stores.task_store.insert_task_if_absent(task)
            if created:
                await stores.stand_store.mark_daily_generated(stand.stand_id, now)
                await stores.ledger_store.append_activity(
                    ActivityLogEntry(
                        activity_id=str(ULID()),
                        type=ActivityType.TASK_CREATED,
                        message=f"Daily task generated for stand {stand.stand_id}",
                        user_id=SYSTEM_ACTOR_ID,
                        task_id=task.task_id,
                        metadata={"stand_id": stand.stand_id, "dedup_key": dedup_key},
                        created_at=now,
                    )
                )

        if created:
            report.created_count += 1
            report.created.append(
                GeneratedTask(task_id=task.task_id, stand_id=stand.stand_id, dedup_key=dedup_key)
            )
        else:
            report.skipped_count += 1
            report.skipped.append(SkippedStand(stand_id=stand.stand_id, dedup_key=dedup_key))
