"""TaskService -- 任务生命周期业务逻辑

所有写操作遵循同一流程：
1. 读取任务，校验角色/归属
2. 幂等判断：任务已处于目标状态或其之后时直接回显当前任务（already_done）
3. 状态机校验（单步或逐步前进路径）+ 建议性容量检查
4. atomic() 内条件更新任务、权威容量写入、追加 fill_history / activity_log
5. 条件更新未命中时回读任务，按并发写入者的结果决定回显或冲突
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from haulflow.core.capacity import CapacityDecision, check_transfer
from haulflow.core.config import DEFAULT_QUANTITY_UNIT
from haulflow.core.exceptions import (
    AlreadyClaimedError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    QuantityRequiredError,
    TaskStatusConflictError,
    TransferRejectedError,
    TransitionConflictError,
    ValidationFailedError,
    capacity_error,
)
from haulflow.core.models import (
    ActivityLogEntry,
    ActivityType,
    Actor,
    AutomotiveStatus,
    DestinationContainer,
    FillHistoryEntry,
    LegacyStatus,
    Priority,
    SourceContainer,
    Task,
    TaskType,
    WorkflowFamily,
    get_workflow,
)
from haulflow.core.store import StoreGroup, apply_task_change, commit_transfer
from pydantic import BaseModel, Field
from ulid import ULID

log = structlog.get_logger()


class TaskDraft(BaseModel):
    """新建任务的输入"""

    workflow: WorkflowFamily = WorkflowFamily.LEGACY
    source_container_id: str | None = None
    destination_container_id: str | None = None
    stand_id: str | None = None
    box_id: str | None = None
    material_type: str | None = Field(default=None, description="缺省时取来源容器/取货点的物料")
    planned_quantity: float | None = Field(default=None, ge=0)
    estimated_amount: float | None = Field(default=None, ge=0)
    quantity_unit: str | None = None
    title: str = ""
    description: str | None = None
    priority: Priority = Priority.NORMAL


@dataclass
class TaskResult:
    """生命周期操作的返回值"""

    task: Task
    already_done: bool = False
    source_container: SourceContainer | None = None
    destination_container: DestinationContainer | None = None
    fill_entry: FillHistoryEntry | None = None


@dataclass(frozen=True)
class _Transfer:
    destination_id: str
    material_type: str
    amount: float
    unit: str


# 每个前进状态对应的审计类型（未列出的使用 STATUS_CHANGED）
_ACTIVITY_BY_STATUS: dict[str, ActivityType] = {
    LegacyStatus.ASSIGNED: ActivityType.TASK_ASSIGNED,
    LegacyStatus.ACCEPTED: ActivityType.TASK_ACCEPTED,
    LegacyStatus.PICKED_UP: ActivityType.TASK_PICKED_UP,
    LegacyStatus.IN_TRANSIT: ActivityType.TASK_IN_TRANSIT,
    LegacyStatus.DELIVERED: ActivityType.TASK_DELIVERED,
    LegacyStatus.COMPLETED: ActivityType.TASK_COMPLETED,
    LegacyStatus.CANCELLED: ActivityType.TASK_CANCELLED,
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TaskService:
    """任务生命周期服务"""

    def __init__(
        self,
        store_group: StoreGroup,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._stores = store_group
        self._clock = clock

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    async def get_task(self, task_id: str) -> TaskResult:
        """查询任务详情（含来源/目的容器）"""
        return await self._result(await self._load(task_id))

    async def list_tasks(
        self,
        status: str | None = None,
        workflow: str | None = None,
        assigned_to: str | None = None,
        task_type: str | None = None,
        limit: int = 200,
    ) -> list[Task]:
        """查询任务列表"""
        return await self._stores.task_store.list_tasks(
            status=status,
            workflow=workflow,
            assigned_to=assigned_to,
            task_type=task_type,
            limit=limit,
        )

    async def list_activity(self, task_id: str) -> list[ActivityLogEntry]:
        await self._load(task_id)
        return await self._stores.ledger_store.list_activity(task_id=task_id)

    # ------------------------------------------------------------------
    # 创建 / 指派
    # ------------------------------------------------------------------

    async def create_task(self, actor: Actor, draft: TaskDraft) -> TaskResult:
        """创建任务（仅管理员）

        新任务处于所属工作流的开放状态，归属字段始终为空。
        """
        self._require_admin(actor)

        if draft.workflow == WorkflowFamily.LEGACY and not draft.source_container_id:
            raise ValidationFailedError(
                "Legacy tasks require a source container", field="source_container_id"
            )
        if not (draft.source_container_id or draft.stand_id):
            raise ValidationFailedError(
                "Tasks require a source container or a stand", field="source_container_id"
            )

        source = None
        if draft.source_container_id:
            source = await self._source(draft.source_container_id)
        destination = None
        if draft.destination_container_id:
            destination = await self._destination(draft.destination_container_id)
        stand = None
        if draft.stand_id:
            stand = await self._stores.stand_store.get_stand(draft.stand_id)
            if stand is None:
                raise NotFoundError("stand", draft.stand_id)
        if draft.box_id and await self._stores.stand_store.get_box(draft.box_id) is None:
            raise NotFoundError("box", draft.box_id)

        material_type = draft.material_type or (
            source.material_type if source else stand.material_type if stand else None
        )
        if not material_type:
            raise ValidationFailedError("Material type is required", field="material_type")

        now = self._clock()
        workflow = get_workflow(draft.workflow)
        task = Task(
            task_id=str(ULID()),
            workflow=draft.workflow,
            task_type=TaskType.MANUAL,
            status=workflow.open_status,
            title=draft.title,
            description=draft.description,
            priority=draft.priority,
            material_type=material_type,
            planned_quantity=draft.planned_quantity,
            estimated_amount=draft.estimated_amount,
            quantity_unit=draft.quantity_unit
            or (destination.quantity_unit if destination else DEFAULT_QUANTITY_UNIT),
            source_container_id=draft.source_container_id,
            destination_container_id=draft.destination_container_id
            or (stand.destination_container_id if stand else None),
            stand_id=draft.stand_id,
            box_id=draft.box_id,
            created_by=actor.user_id,
            created_at=now,
            updated_at=now,
        )

        async with self._stores.atomic() as stores:
            await stores.task_store.create_task(task)
            if task.box_id and not await stores.stand_store.occupy_box(
                task.box_id, task.task_id, now
            ):
                raise ConflictError(f"Box {task.box_id} is in use", box_id=task.box_id)
            await stores.ledger_store.append_activity(
                self._activity(
                    ActivityType.TASK_CREATED,
                    actor.user_id,
                    task,
                    now,
                    f"Task created ({task.workflow}, {task.material_type})",
                    container_id=task.destination_container_id,
                )
            )

        log.info(
            "task_created",
            task_id=task.task_id,
            workflow=str(task.workflow),
            created_by=actor.user_id,
        )
        return await self._result(task)

    async def assign_task(self, actor: Actor, task_id: str, user_id: str) -> TaskResult:
        """管理员指派（legacy：PLANNED -> ASSIGNED）"""
        self._require_admin(actor)
        task = await self._load(task_id)
        self._require_family(task, WorkflowFamily.LEGACY, "assign")
        if not user_id:
            raise ValidationFailedError("Assignee is required", field="user_id")

        target = LegacyStatus.ASSIGNED
        workflow = get_workflow(task.workflow)
        if workflow.has_reached(task.status, target):
            if task.owner_id not in (None, user_id):
                raise AlreadyClaimedError(task.task_id, task.owner_id)
            return await self._result(task, already_done=True)
        self._require_step(task, target)

        now = self._clock()
        changes: dict[str, object] = {
            "status": target,
            "assigned_to": user_id,
            "assigned_at": now,
        }
        activities = [
            self._activity(
                ActivityType.TASK_ASSIGNED,
                actor.user_id,
                task,
                now,
                f"Task assigned to {user_id}",
                metadata={"assigned_to": user_id},
            )
        ]
        if not await self._commit(task, target, actor, changes, activities, now=now):
            return await self._result(await self._load(task_id), already_done=True)

        log.info("task_assigned", task_id=task_id, assigned_to=user_id)
        return await self._result(await self._load(task_id))

    # ------------------------------------------------------------------
    # 认领 / 接单 / 取货 / 送达
    # ------------------------------------------------------------------

    async def claim_task(self, actor: Actor, task_id: str) -> TaskResult:
        """认领无归属任务

        legacy：开放状态直接前进到 ACCEPTED 并写入归属；
        automotive：只写入归属，状态保持 OPEN。
        条件更新要求归属为空，并发认领只有一个成功，其余收到 AlreadyClaimedError。
        """
        self._require_active(actor)
        task = await self._load(task_id)
        workflow = get_workflow(task.workflow)

        if task.owner_id is not None and task.owner_id != actor.user_id:
            raise AlreadyClaimedError(task.task_id, task.owner_id)

        if task.workflow == WorkflowFamily.LEGACY:
            target = LegacyStatus.ACCEPTED
            if workflow.has_reached(task.status, target):
                if task.owner_id == actor.user_id:
                    return await self._result(task, already_done=True)
                raise TransitionConflictError(task.status, target)
            path = self._require_path(task, target)
        else:
            target = AutomotiveStatus.OPEN
            if task.owner_id == actor.user_id:
                return await self._result(task, already_done=True)
            if task.status != AutomotiveStatus.OPEN:
                raise TransitionConflictError(task.status, target)
            path = []

        now = self._clock()
        changes: dict[str, object] = self._stamp(task, path, now)
        if path:
            changes["status"] = path[-1]
        changes.update(
            {
                "claimed_by_user_id": actor.user_id,
                "assigned_to": actor.user_id,
                "claimed_at": now,
            }
        )
        activities = [
            self._activity(
                ActivityType.TASK_CLAIMED,
                actor.user_id,
                task,
                now,
                f"Task claimed by {actor.user_id}",
                metadata={"from_status": task.status, "to_status": changes.get("status", task.status)},
            )
        ]
        committed = await self._commit(
            task,
            target,
            actor,
            changes,
            activities,
            now=now,
            require_unowned=task.owner_id is None,
        )
        if not committed:
            return await self._result(await self._load(task_id), already_done=True)

        log.info("task_claimed", task_id=task_id, user_id=actor.user_id)
        return await self._result(await self._load(task_id))

    async def accept_task(self, actor: Actor, task_id: str) -> TaskResult:
        """接单（仅 legacy）

        管理员或已指派的负责人可接单；无归属任务自动指派给调用者。
        提交前做物料/容量的建议性检查，不通过时返回带数值的校验错误。
        """
        self._require_active(actor)
        task = await self._load(task_id)
        self._require_family(task, WorkflowFamily.LEGACY, "accept")
        if task.owner_id is not None:
            self._require_owner_or_admin(actor, task)

        target = LegacyStatus.ACCEPTED
        workflow = get_workflow(task.workflow)
        if workflow.has_reached(task.status, target):
            return await self._result(task, already_done=True)
        path = self._require_path(task, target)

        if task.destination_container_id:
            destination = await self._destination(task.destination_container_id)
            decision = check_transfer(
                await self._source_material(task),
                destination,
                task.planned_quantity or 0.0,
            )
            self._raise_if_rejected(task, decision)

        now = self._clock()
        changes = self._stamp(task, path, now)
        changes["status"] = target
        if task.owner_id is None:
            changes["assigned_to"] = actor.user_id
        activities = [
            self._activity(
                ActivityType.TASK_ACCEPTED,
                actor.user_id,
                task,
                now,
                f"Task accepted by {actor.user_id}",
                metadata={"from_status": task.status, "to_status": target},
            )
        ]
        committed = await self._commit(
            task,
            target,
            actor,
            changes,
            activities,
            now=now,
            require_unowned=task.owner_id is None,
        )
        if not committed:
            return await self._result(await self._load(task_id), already_done=True)

        log.info("task_accepted", task_id=task_id, user_id=actor.user_id)
        return await self._result(await self._load(task_id))

    async def pickup_task(self, actor: Actor, task_id: str) -> TaskResult:
        """取货（仅 legacy），要求任务已处于 ACCEPTED"""
        self._require_active(actor)
        task = await self._load(task_id)
        self._require_family(task, WorkflowFamily.LEGACY, "pickup")
        self._require_owner_or_admin(actor, task)

        target = LegacyStatus.PICKED_UP
        if get_workflow(task.workflow).has_reached(task.status, target):
            return await self._result(task, already_done=True)
        self._require_step(task, target)

        return await self._advance(actor, task, [target])

    async def deliver_task(
        self,
        actor: Actor,
        task_id: str,
        measured_weight: float | None = None,
        destination_container_id: str | None = None,
    ) -> TaskResult:
        """送达并完成（仅 legacy）

        转移数量优先级：实测 > 计划 > 估计。已取货后的任一状态
        （PICKED_UP / IN_TRANSIT / DELIVERED）都可直接完成，中间状态时间戳逐一写入。
        目的容器的容量在提交时按当时的 current_amount 重新校验。
        """
        self._require_active(actor)
        task = await self._load(task_id)
        self._require_family(task, WorkflowFamily.LEGACY, "deliver")
        self._require_owner_or_admin(actor, task)

        target = LegacyStatus.COMPLETED
        workflow = get_workflow(task.workflow)
        if workflow.has_reached(task.status, target):
            return await self._result(task, already_done=True)
        if not workflow.has_reached(task.status, LegacyStatus.PICKED_UP):
            raise TransitionConflictError(task.status, target)
        path = self._require_path(task, target)

        if measured_weight is not None and measured_weight < 0:
            raise ValidationFailedError(
                "Measured weight must not be negative", field="measured_weight"
            )
        amount = measured_weight if measured_weight is not None else task.transfer_quantity()
        if amount is None:
            raise QuantityRequiredError(
                "A measured weight is required when the task has no planned or estimated quantity"
            )

        transfer = await self._plan_transfer(
            task, destination_container_id or task.destination_container_id, amount
        )

        now = self._clock()
        changes = self._stamp(task, path, now)
        changes.update(
            {
                "status": target,
                "actual_quantity": amount,
                "destination_container_id": transfer.destination_id,
            }
        )
        if measured_weight is not None:
            changes["measured_weight"] = measured_weight
        activities = [
            self._activity(
                ActivityType.TASK_COMPLETED,
                actor.user_id,
                task,
                now,
                f"Task delivered: {amount} {transfer.unit} into {transfer.destination_id}",
                container_id=transfer.destination_id,
                metadata={
                    "from_status": task.status,
                    "to_status": target,
                    "amount": amount,
                    "unit": transfer.unit,
                },
            )
        ]
        result = await self._advance_with(
            actor, task, target, changes, activities, now=now, transfer=transfer
        )
        log.info(
            "task_delivered",
            task_id=task_id,
            destination_container_id=transfer.destination_id,
            amount=amount,
        )
        return result

    # ------------------------------------------------------------------
    # 取消 / 转交
    # ------------------------------------------------------------------

    async def cancel_task(self, actor: Actor, task_id: str, reason: str | None = None) -> TaskResult:
        """取消任务

        已取消时回显（already_done）；已完成/已处置时返回状态冲突。
        automotive 任务取消时释放承运箱。
        仅负责人或管理员可取消；无人认领的任务司机只能推进（推进即认领），不能取消。
        """
        self._require_active(actor)
        task = await self._load(task_id)
        self._require_owner_or_admin(actor, task)

        workflow = get_workflow(task.workflow)
        target = workflow.cancelled
        if task.status == target:
            return await self._result(task, already_done=True)
        if not workflow.check(task.status, target):
            raise TransitionConflictError(task.status, target)

        now = self._clock()
        changes: dict[str, object] = {
            "status": target,
            "cancelled_at": now,
            "cancellation_reason": reason,
        }
        activities = [
            self._activity(
                ActivityType.TASK_CANCELLED,
                actor.user_id,
                task,
                now,
                f"Task cancelled: {reason}" if reason else "Task cancelled",
                metadata={"from_status": task.status, "reason": reason},
            )
        ]
        committed = await self._commit(
            task,
            target,
            actor,
            changes,
            activities,
            now=now,
            release_box=task.workflow == WorkflowFamily.AUTOMOTIVE,
        )
        if not committed:
            return await self._result(await self._load(task_id), already_done=True)

        log.info("task_cancelled", task_id=task_id, reason=reason)
        return await self._result(await self._load(task_id))

    async def handover_task(self, actor: Actor, task_id: str, new_owner_id: str) -> TaskResult:
        """把任务转交给另一名司机（负责人或管理员，非终态）"""
        self._require_active(actor)
        task = await self._load(task_id)
        self._require_owner_or_admin(actor, task)
        if not new_owner_id:
            raise ValidationFailedError("New owner is required", field="new_owner_id")
        if task.is_terminal:
            raise ConflictError(
                "Cannot hand over a task in a terminal state",
                current_status=task.status,
            )
        if task.owner_id == new_owner_id:
            return await self._result(task, already_done=True)

        now = self._clock()
        changes: dict[str, object] = {
            "claimed_by_user_id": new_owner_id,
            "assigned_to": new_owner_id,
            "handover_at": now,
        }
        activities = [
            self._activity(
                ActivityType.TASK_HANDOVER,
                actor.user_id,
                task,
                now,
                f"Task handed over from {task.owner_id} to {new_owner_id}",
                metadata={"from_user_id": task.owner_id, "to_user_id": new_owner_id},
            )
        ]
        try:
            async with self._stores.atomic() as stores:
                await apply_task_change(stores, task.task_id, task.status, changes, now)
                for entry in activities:
                    await stores.ledger_store.append_activity(entry)
        except TaskStatusConflictError:
            current = await self._load(task_id)
            if current.owner_id == new_owner_id:
                return await self._result(current, already_done=True)
            raise ConflictError(
                "Task changed while handing over", current_status=current.status
            ) from None

        log.info(
            "task_handed_over",
            task_id=task_id,
            from_user_id=task.owner_id,
            to_user_id=new_owner_id,
        )
        return await self._result(await self._load(task_id))

    # ------------------------------------------------------------------
    # automotive
    # ------------------------------------------------------------------

    async def set_status(
        self,
        actor: Actor,
        task_id: str,
        status: str,
        weight: float | None = None,
        destination_container_id: str | None = None,
        reason: str | None = None,
    ) -> TaskResult:
        """automotive 通用状态入口

        目标状态必须是当前状态的下一步；时间戳字段由流转表查出。
        WEIGHED 必须同时提供重量，并在同一事务内完成容量写入；
        进入 DISPOSED / CANCELLED 时释放承运箱。
        CANCELLED 交给 cancel_task，沿用其负责人或管理员的权限要求。
        """
        self._require_active(actor)
        task = await self._load(task_id)
        self._require_family(task, WorkflowFamily.AUTOMOTIVE, "status")
        workflow = get_workflow(task.workflow)
        if not workflow.is_known(status):
            raise ValidationFailedError(f"Unknown status {status}", field="status")
        target = workflow.normalize(status)

        if target == workflow.cancelled:
            return await self.cancel_task(actor, task_id, reason)

        if task.owner_id is not None:
            self._require_owner_or_admin(actor, task)
        if workflow.has_reached(task.status, target):
            return await self._result(task, already_done=True)
        self._require_step(task, target)

        now = self._clock()
        changes = self._stamp(task, [target], now)
        changes["status"] = target
        activities = [
            self._activity(
                ActivityType.STATUS_CHANGED,
                actor.user_id,
                task,
                now,
                f"Status changed from {task.status} to {target}",
                metadata={"from_status": task.status, "to_status": target},
            )
        ]

        transfer = None
        if target == AutomotiveStatus.WEIGHED:
            transfer = await self._weigh(task, weight, destination_container_id, changes)
            activities.append(self._weight_activity(actor, task, transfer, now))

        return await self._advance_with(
            actor,
            task,
            target,
            changes,
            activities,
            now=now,
            transfer=transfer,
            release_box=target == AutomotiveStatus.DISPOSED,
        )

    async def weigh_and_dispose(
        self,
        actor: Actor,
        task_id: str,
        weight: float | None = None,
        destination_container_id: str | None = None,
    ) -> TaskResult:
        """称重并处置（automotive）：TAKEN_OVER -> WEIGHED -> DISPOSED 一次完成

        已称重的任务只做处置，不再写入容量。
        """
        self._require_active(actor)
        task = await self._load(task_id)
        self._require_family(task, WorkflowFamily.AUTOMOTIVE, "weigh-and-dispose")
        if task.owner_id is not None:
            self._require_owner_or_admin(actor, task)

        target = AutomotiveStatus.DISPOSED
        workflow = get_workflow(task.workflow)
        if workflow.has_reached(task.status, target):
            return await self._result(task, already_done=True)
        if not workflow.has_reached(task.status, AutomotiveStatus.TAKEN_OVER):
            raise TransitionConflictError(task.status, target)
        path = self._require_path(task, target)

        now = self._clock()
        changes = self._stamp(task, path, now)
        changes["status"] = target
        activities = [
            self._activity(
                ActivityType.STATUS_CHANGED,
                actor.user_id,
                task,
                now,
                f"Status changed from {task.status} to {target}",
                metadata={"from_status": task.status, "to_status": target, "path": path},
            )
        ]

        transfer = None
        if AutomotiveStatus.WEIGHED in path:
            transfer = await self._weigh(task, weight, destination_container_id, changes)
            activities.append(self._weight_activity(actor, task, transfer, now))

        return await self._advance_with(
            actor,
            task,
            target,
            changes,
            activities,
            now=now,
            transfer=transfer,
            release_box=True,
        )

    # ------------------------------------------------------------------
    # 内部：提交与并发处理
    # ------------------------------------------------------------------

    async def _advance(self, actor: Actor, task: Task, path: list[str]) -> TaskResult:
        """沿 path 前进（无容量写入），写入逐步时间戳与对应审计"""
        now = self._clock()
        target = path[-1]
        changes = self._stamp(task, path, now)
        changes["status"] = target
        activity_type = _ACTIVITY_BY_STATUS.get(target, ActivityType.STATUS_CHANGED)
        activities = [
            self._activity(
                activity_type,
                actor.user_id,
                task,
                now,
                f"Status changed from {task.status} to {target}",
                metadata={"from_status": task.status, "to_status": target},
            )
        ]
        return await self._advance_with(actor, task, target, changes, activities, now=now)

    async def _advance_with(
        self,
        actor: Actor,
        task: Task,
        target: str,
        changes: dict[str, object],
        activities: list[ActivityLogEntry],
        *,
        now: datetime,
        transfer: _Transfer | None = None,
        release_box: bool = False,
    ) -> TaskResult:
        # worker 推进无归属任务时自动认领
        require_unowned = task.owner_id is None and not actor.is_admin
        if require_unowned:
            changes.update(
                {
                    "claimed_by_user_id": actor.user_id,
                    "assigned_to": actor.user_id,
                    "claimed_at": now,
                }
            )
        fill_entry = await self._commit(
            task,
            target,
            actor,
            changes,
            activities,
            now=now,
            transfer=transfer,
            release_box=release_box,
            require_unowned=require_unowned,
        )
        if not fill_entry:
            return await self._result(await self._load(task.task_id), already_done=True)

        log.info(
            "task_status_changed",
            task_id=task.task_id,
            from_status=task.status,
            to_status=target,
            user_id=actor.user_id,
        )
        result = await self._result(await self._load(task.task_id))
        if isinstance(fill_entry, FillHistoryEntry):
            result.fill_entry = fill_entry
        return result

    async def _commit(
        self,
        task: Task,
        target: str,
        actor: Actor,
        changes: dict[str, object],
        activities: list[ActivityLogEntry],
        *,
        now: datetime,
        transfer: _Transfer | None = None,
        release_box: bool = False,
        require_unowned: bool = False,
    ) -> FillHistoryEntry | bool:
        """单事务提交：条件更新任务 + 容量写入 + 释放承运箱 + 审计

        Returns:
            写入成功时返回 True（有容量写入时返回对应的 FillHistoryEntry）；
            并发写入者已使任务到达 target 时返回 False

        Raises:
            AlreadyClaimedError / TransitionConflictError: 并发修改导致无法完成
            ValidationFailedError: 提交时容量检查失败
        """
        fill_entry: FillHistoryEntry | None = None
        try:
            async with self._stores.atomic() as stores:
                await apply_task_change(
                    stores,
                    task.task_id,
                    task.status,
                    changes,
                    now,
                    require_unowned=require_unowned,
                )
                if transfer is not None:
                    fill_entry = await commit_transfer(
                        stores,
                        task_id=task.task_id,
                        destination_id=transfer.destination_id,
                        material_type=transfer.material_type,
                        amount=transfer.amount,
                        unit=transfer.unit,
                        recorded_by=actor.user_id,
                        now=now,
                    )
                    if task.source_container_id:
                        await stores.container_store.mark_source_emptied(
                            task.source_container_id, now
                        )
                    activities.append(
                        self._activity(
                            ActivityType.CONTAINER_FILLED,
                            actor.user_id,
                            task,
                            now,
                            f"Added {transfer.amount} {transfer.unit} to {transfer.destination_id}",
                            container_id=transfer.destination_id,
                            metadata={"amount": transfer.amount, "unit": transfer.unit},
                        )
                    )
                if release_box and task.box_id:
                    released = await stores.stand_store.release_box(task.box_id, task.task_id, now)
                    if released:
                        activities.append(
                            self._activity(
                                ActivityType.BOX_RELEASED,
                                actor.user_id,
                                task,
                                now,
                                f"Box {task.box_id} released",
                                metadata={"box_id": task.box_id},
                            )
                        )
                for entry in activities:
                    await stores.ledger_store.append_activity(entry)
        except TransferRejectedError as e:
            raise await self._rejected_transfer(task, transfer, e) from None
        except TaskStatusConflictError:
            return await self._resolve_race(task, target, actor, require_unowned)

        return fill_entry or True

    async def _resolve_race(
        self, task: Task, target: str, actor: Actor, require_unowned: bool
    ) -> bool:
        """条件更新未命中：回读任务判断并发写入者的结果

        Returns:
            False 表示任务已由并发请求推进到 target（回显 already_done）
        """
        current = await self._load(task.task_id)
        workflow = get_workflow(current.workflow)
        log.info(
            "task_update_conflict",
            task_id=task.task_id,
            expected_status=task.status,
            current_status=current.status,
            requested_status=target,
        )
        if require_unowned and current.owner_id is not None:
            if current.owner_id != actor.user_id:
                raise AlreadyClaimedError(current.task_id, current.owner_id)
            if workflow.has_reached(current.status, target):
                return False
        if current.status != task.status and workflow.has_reached(current.status, target):
            return False
        raise TransitionConflictError(current.status, target)

    async def _rejected_transfer(
        self, task: Task, transfer: _Transfer, error: TransferRejectedError
    ) -> ValidationFailedError:
        """提交时的权威检查失败：按当前容器状态重算决策并翻译为业务错误"""
        destination = await self._destination(error.container_id)
        decision = check_transfer(transfer.material_type, destination, transfer.amount)
        log.warning(
            "transfer_rejected",
            task_id=task.task_id,
            container_id=error.container_id,
            requested_amount=transfer.amount,
            remaining_capacity=decision.remaining_capacity,
            reason=str(decision.reason) if decision.reason else None,
        )
        if decision.allowed:
            # 容量在回滚后又被释放，调用方重试即可
            return ValidationFailedError(
                "Destination container changed concurrently, retry the transfer",
                container_id=error.container_id,
            )
        return capacity_error(decision)

    # ------------------------------------------------------------------
    # 内部：容量
    # ------------------------------------------------------------------

    async def _plan_transfer(
        self, task: Task, destination_id: str | None, amount: float
    ) -> _Transfer:
        """解析目的容器并执行建议性容量检查"""
        if not destination_id:
            raise ValidationFailedError(
                "A destination container is required", field="destination_container_id"
            )
        destination = await self._destination(destination_id)
        material = await self._source_material(task)
        self._raise_if_rejected(task, check_transfer(material, destination, amount))
        return _Transfer(
            destination_id=destination.container_id,
            material_type=material,
            amount=amount,
            unit=destination.quantity_unit,
        )

    async def _weigh(
        self,
        task: Task,
        weight: float | None,
        destination_container_id: str | None,
        changes: dict[str, object],
    ) -> _Transfer:
        if weight is None:
            raise QuantityRequiredError("A measured weight is required to record WEIGHED")
        if weight < 0:
            raise ValidationFailedError("Weight must not be negative", field="weight")
        transfer = await self._plan_transfer(
            task, destination_container_id or task.destination_container_id, weight
        )
        changes.update(
            {
                "measured_weight": weight,
                "actual_quantity": weight,
                "destination_container_id": transfer.destination_id,
            }
        )
        return transfer

    def _raise_if_rejected(self, task: Task, decision: CapacityDecision) -> None:
        if decision.allowed:
            return
        log.info(
            "transfer_check_failed",
            task_id=task.task_id,
            reason=str(decision.reason),
            source_material=decision.source_material,
            destination_material=decision.destination_material,
            requested_amount=decision.requested_amount,
            remaining_capacity=decision.remaining_capacity,
        )
        raise capacity_error(decision)

    async def _source_material(self, task: Task) -> str:
        """来源物料：来源容器的物料，缺省时取任务自身的物料"""
        if task.source_container_id:
            source = await self._stores.container_store.get_source_container(
                task.source_container_id
            )
            if source is not None:
                return source.material_type
        return task.material_type

    # ------------------------------------------------------------------
    # 内部：读取与校验
    # ------------------------------------------------------------------

    async def _load(self, task_id: str) -> Task:
        task = await self._stores.task_store.get_task(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    async def _source(self, container_id: str) -> SourceContainer:
        source = await self._stores.container_store.get_source_container(container_id)
        if source is None:
            raise NotFoundError("container", container_id)
        return source

    async def _destination(self, container_id: str) -> DestinationContainer:
        destination = await self._stores.container_store.get_destination_container(container_id)
        if destination is None:
            raise NotFoundError("container", container_id)
        return destination

    async def _result(self, task: Task, already_done: bool = False) -> TaskResult:
        source = None
        if task.source_container_id:
            source = await self._stores.container_store.get_source_container(
                task.source_container_id
            )
        destination = None
        if task.destination_container_id:
            destination = await self._stores.container_store.get_destination_container(
                task.destination_container_id
            )
        return TaskResult(
            task=task,
            already_done=already_done,
            source_container=source,
            destination_container=destination,
        )

    @staticmethod
    def _require_active(actor: Actor) -> None:
        if not actor.is_active:
            raise ForbiddenError("User account is inactive", user_id=actor.user_id)

    @classmethod
    def _require_admin(cls, actor: Actor) -> None:
        cls._require_active(actor)
        if not actor.is_admin:
            raise ForbiddenError("Administrator role required", user_id=actor.user_id)

    @staticmethod
    def _require_owner_or_admin(actor: Actor, task: Task) -> None:
        if actor.is_admin or task.owner_id == actor.user_id:
            return
        raise ForbiddenError(
            "Only the task owner or an administrator may do this",
            user_id=actor.user_id,
            owner_id=task.owner_id,
        )

    @staticmethod
    def _require_family(task: Task, family: WorkflowFamily, operation: str) -> None:
        if task.workflow != family:
            raise ValidationFailedError(
                f"Operation {operation} does not apply to {task.workflow} tasks",
                workflow=str(task.workflow),
            )

    @staticmethod
    def _require_step(task: Task, target: str) -> None:
        if not get_workflow(task.workflow).check(task.status, target):
            raise TransitionConflictError(task.status, target)

    @staticmethod
    def _require_path(task: Task, target: str) -> list[str]:
        path = get_workflow(task.workflow).forward_path(task.status, target)
        if path is None:
            raise TransitionConflictError(task.status, target)
        return path

    @staticmethod
    def _stamp(task: Task, path: list[str], now: datetime) -> dict[str, object]:
        """逐步状态 -> 时间戳字段，按流转表查出"""
        workflow = get_workflow(task.workflow)
        changes: dict[str, object] = {}
        for status in path:
            field_name = workflow.timestamp_field(status)
            if field_name:
                changes[field_name] = now
        return changes

    @staticmethod
    def _activity(
        activity_type: ActivityType,
        user_id: str | None,
        task: Task,
        now: datetime,
        message: str,
        container_id: str | None = None,
        metadata: dict | None = None,
    ) -> ActivityLogEntry:
        return ActivityLogEntry(
            activity_id=str(ULID()),
            type=activity_type,
            message=message,
            user_id=user_id,
            task_id=task.task_id,
            container_id=container_id,
            metadata=metadata or {},
            created_at=now,
        )

    def _weight_activity(
        self, actor: Actor, task: Task, transfer: _Transfer, now: datetime
    ) -> ActivityLogEntry:
        return self._activity(
            ActivityType.WEIGHT_RECORDED,
            actor.user_id,
            task,
            now,
            f"Weight recorded: {transfer.amount} {transfer.unit}",
            container_id=transfer.destination_id,
            metadata={"weight": transfer.amount, "unit": transfer.unit},
        )
