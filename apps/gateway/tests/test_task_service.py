"""TaskService 测试 -- legacy 工作流

测试内容：
1. 创建任务的角色与输入校验
2. 认领：并发认领只有一个成功，重试回显 already_done
3. 接单时的物料/容量建议性检查
4. 送达：转移数量优先级、提交时容量校验、失败不留部分写入
5. 非法流转、归属校验、取消、转交
"""

import asyncio

import pytest
from haulflow.core.exceptions import (
    AlreadyClaimedError,
    CapacityExceededError,
    ConflictError,
    ForbiddenError,
    MaterialMismatchError,
    NotFoundError,
    QuantityRequiredError,
    TransitionConflictError,
    ValidationFailedError,
)
from haulflow.core.models import (
    ActivityType,
    Actor,
    AutomotiveStatus,
    LegacyStatus,
    WorkflowFamily,
)
from haulflow.gateway.services.task_service import TaskDraft


@pytest.fixture
async def new_task(task_service, admin, seed_catalog):
    """写入标准目录后由管理员创建 legacy 任务的工厂"""
    seeded = False

    async def _create(dst_metal_amount: float = 0.0, **fields):
        nonlocal seeded
        if not seeded:
            await seed_catalog(dst_metal_amount=dst_metal_amount)
            seeded = True
        draft = TaskDraft(
            source_container_id="src-metal",
            destination_container_id="dst-metal",
            **fields,
        )
        result = await task_service.create_task(admin, draft)
        return result.task

    return _create


class TestCreateTask:
    async def test_new_task_is_open_and_unowned(self, new_task):
        task = await new_task(planned_quantity=120)
        assert task.status == LegacyStatus.PLANNED
        assert task.workflow == WorkflowFamily.LEGACY
        assert task.material_type == "metal"
        assert task.claimed_by_user_id is None
        assert task.assigned_to is None

    async def test_driver_cannot_create(self, task_service, driver, seed_catalog):
        await seed_catalog()
        with pytest.raises(ForbiddenError):
            await task_service.create_task(driver, TaskDraft(source_container_id="src-metal"))

    async def test_legacy_requires_source(self, task_service, admin, seed_catalog):
        await seed_catalog()
        with pytest.raises(ValidationFailedError):
            await task_service.create_task(admin, TaskDraft(stand_id="stand-1"))

    async def test_unknown_container(self, task_service, admin, seed_catalog):
        await seed_catalog()
        with pytest.raises(NotFoundError) as exc_info:
            await task_service.create_task(admin, TaskDraft(source_container_id="nope"))
        assert exc_info.value.code == "CONTAINER_NOT_FOUND"

    async def test_created_activity_recorded(self, task_service, new_task):
        task = await new_task()
        activity = await task_service.list_activity(task.task_id)
        assert [a.type for a in activity] == [ActivityType.TASK_CREATED]


class TestClaim:
    async def test_claim_moves_legacy_task_to_accepted(self, task_service, new_task, driver, clock):
        task = await new_task()
        result = await task_service.claim_task(driver, task.task_id)

        claimed = result.task
        assert not result.already_done
        assert claimed.status == LegacyStatus.ACCEPTED
        assert claimed.claimed_by_user_id == "driver-1"
        assert claimed.assigned_to == "driver-1"
        # 中间状态的时间戳逐一写入
        assert claimed.assigned_at == clock.now
        assert claimed.accepted_at == clock.now

    async def test_concurrent_claims_single_winner(
        self, task_service, new_task, driver, other_driver
    ):
        task = await new_task()
        results = await asyncio.gather(
            task_service.claim_task(driver, task.task_id),
            task_service.claim_task(other_driver, task.task_id),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, BaseException)]
        losers = [r for r in results if isinstance(r, BaseException)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], AlreadyClaimedError)

        winner_id = winners[0].task.claimed_by_user_id
        assert losers[0].claimed_by_user_id == winner_id
        stored = await task_service.get_task(task.task_id)
        assert stored.task.claimed_by_user_id == winner_id

    async def test_retry_by_claimant_is_idempotent(self, task_service, new_task, driver):
        task = await new_task()
        await task_service.claim_task(driver, task.task_id)
        again = await task_service.claim_task(driver, task.task_id)

        assert again.already_done
        assert again.task.status == LegacyStatus.ACCEPTED
        claims = [
            a
            for a in await task_service.list_activity(task.task_id)
            if a.type == ActivityType.TASK_CLAIMED
        ]
        assert len(claims) == 1

    async def test_inactive_user_rejected(self, task_service, new_task):
        task = await new_task()
        with pytest.raises(ForbiddenError):
            await task_service.claim_task(Actor(user_id="gone", is_active=False), task.task_id)

    async def test_missing_task(self, task_service, driver, seed_catalog):
        await seed_catalog()
        with pytest.raises(NotFoundError) as exc_info:
            await task_service.claim_task(driver, "missing")
        assert exc_info.value.code == "TASK_NOT_FOUND"


class TestAssignAndAccept:
    async def test_assign_then_accept(self, task_service, new_task, admin, driver):
        task = await new_task(planned_quantity=100)
        assigned = await task_service.assign_task(admin, task.task_id, "driver-1")
        assert assigned.task.status == LegacyStatus.ASSIGNED

        accepted = await task_service.accept_task(driver, task.task_id)
        assert accepted.task.status == LegacyStatus.ACCEPTED

        again = await task_service.accept_task(driver, task.task_id)
        assert again.already_done

    async def test_accept_by_other_driver_forbidden(
        self, task_service, new_task, admin, other_driver
    ):
        task = await new_task()
        await task_service.assign_task(admin, task.task_id, "driver-1")
        with pytest.raises(ForbiddenError):
            await task_service.accept_task(other_driver, task.task_id)

    async def test_accept_rejects_material_mismatch(self, task_service, seed_catalog, admin, driver):
        await seed_catalog()
        task = (
            await task_service.create_task(
                admin,
                TaskDraft(source_container_id="src-paper", destination_container_id="dst-metal"),
            )
        ).task
        await task_service.assign_task(admin, task.task_id, "driver-1")

        with pytest.raises(MaterialMismatchError) as exc_info:
            await task_service.accept_task(driver, task.task_id)
        assert exc_info.value.details == {
            "source_material": "paper",
            "destination_material": "metal",
        }
        stored = await task_service.get_task(task.task_id)
        assert stored.task.status == LegacyStatus.ASSIGNED

    async def test_accept_rejects_planned_over_capacity(self, task_service, new_task, admin, driver):
        task = await new_task(dst_metal_amount=900, planned_quantity=150)
        await task_service.assign_task(admin, task.task_id, "driver-1")

        with pytest.raises(CapacityExceededError) as exc_info:
            await task_service.accept_task(driver, task.task_id)
        assert exc_info.value.details["remaining_capacity"] == 100


class TestDeliver:
    async def _picked_up(self, task_service, new_task, driver, **fields):
        task = await new_task(**fields)
        await task_service.claim_task(driver, task.task_id)
        await task_service.pickup_task(driver, task.task_id)
        return task

    async def test_full_lifecycle_updates_container_and_ledger(
        self, task_service, new_task, driver, store_group, clock
    ):
        task = await self._picked_up(task_service, new_task, driver, planned_quantity=120)
        result = await task_service.deliver_task(driver, task.task_id)

        done = result.task
        assert done.status == LegacyStatus.COMPLETED
        assert done.actual_quantity == 120
        assert done.in_transit_at == clock.now
        assert done.delivered_at == clock.now
        assert done.completed_at == clock.now
        assert result.destination_container.current_amount == 120
        assert result.fill_entry.amount_added == 120
        assert result.fill_entry.task_id == task.task_id

        source = await store_group.container_store.get_source_container("src-metal")
        assert source.last_emptied_at == clock.now

        types = [a.type for a in await task_service.list_activity(task.task_id)]
        assert ActivityType.TASK_COMPLETED in types
        assert ActivityType.CONTAINER_FILLED in types

    async def test_measured_weight_wins(self, task_service, new_task, driver):
        task = await self._picked_up(
            task_service, new_task, driver, planned_quantity=120, estimated_amount=80
        )
        result = await task_service.deliver_task(driver, task.task_id, measured_weight=95.5)
        assert result.task.measured_weight == 95.5
        assert result.destination_container.current_amount == 95.5

    async def test_estimated_amount_used_without_plan(self, task_service, new_task, driver):
        task = await self._picked_up(task_service, new_task, driver, estimated_amount=80)
        result = await task_service.deliver_task(driver, task.task_id)
        assert result.task.actual_quantity == 80

    async def test_quantity_required(self, task_service, new_task, driver):
        task = await self._picked_up(task_service, new_task, driver)
        with pytest.raises(QuantityRequiredError):
            await task_service.deliver_task(driver, task.task_id)

    async def test_over_capacity_rejected_without_partial_write(
        self, task_service, new_task, driver, store_group
    ):
        task = await self._picked_up(task_service, new_task, driver, dst_metal_amount=900)

        with pytest.raises(CapacityExceededError) as exc_info:
            await task_service.deliver_task(driver, task.task_id, measured_weight=150)
        assert exc_info.value.details["remaining_capacity"] == 100
        assert exc_info.value.details["requested_amount"] == 150

        stored = await task_service.get_task(task.task_id)
        assert stored.task.status == LegacyStatus.PICKED_UP
        assert stored.destination_container.current_amount == 900
        assert len(await store_group.ledger_store.list_fill_history("dst-metal")) == 1

        # 恰好装满是允许的
        result = await task_service.deliver_task(driver, task.task_id, measured_weight=100)
        assert result.destination_container.current_amount == 1000
        assert result.destination_container.remaining_capacity == 0

    async def test_material_mismatch_rejected_despite_free_capacity(
        self, task_service, new_task, driver, store_group
    ):
        task = await self._picked_up(task_service, new_task, driver, planned_quantity=50)

        with pytest.raises(MaterialMismatchError) as exc_info:
            await task_service.deliver_task(
                driver, task.task_id, destination_container_id="dst-paper"
            )
        assert exc_info.value.details == {
            "source_material": "metal",
            "destination_material": "paper",
        }

        stored = await task_service.get_task(task.task_id)
        assert stored.task.status == LegacyStatus.PICKED_UP
        assert stored.task.destination_container_id == "dst-metal"
        paper = await store_group.container_store.get_destination_container("dst-paper")
        assert paper.current_amount == 0
        assert await store_group.ledger_store.list_fill_history("dst-paper") == []

    async def test_retry_does_not_double_count(self, task_service, new_task, driver, store_group):
        task = await self._picked_up(task_service, new_task, driver, planned_quantity=50)
        await task_service.deliver_task(driver, task.task_id)
        again = await task_service.deliver_task(driver, task.task_id)

        assert again.already_done
        assert again.destination_container.current_amount == 50
        assert len(await store_group.ledger_store.list_fill_history("dst-metal")) == 1

    async def test_concurrent_deliveries_never_overfill(
        self, task_service, new_task, driver, store_group
    ):
        first = await self._picked_up(task_service, new_task, driver, dst_metal_amount=800)
        second = await self._picked_up(task_service, new_task, driver)

        results = await asyncio.gather(
            task_service.deliver_task(driver, first.task_id, measured_weight=150),
            task_service.deliver_task(driver, second.task_id, measured_weight=150),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, CapacityExceededError)) == 1
        container = await store_group.container_store.get_destination_container("dst-metal")
        assert container.current_amount == 950

    async def test_deliver_before_pickup_is_conflict(self, task_service, new_task, driver):
        task = await new_task(planned_quantity=10)
        await task_service.claim_task(driver, task.task_id)
        with pytest.raises(TransitionConflictError) as exc_info:
            await task_service.deliver_task(driver, task.task_id)
        assert exc_info.value.current_status == LegacyStatus.ACCEPTED
        assert exc_info.value.requested_status == LegacyStatus.COMPLETED


class TestTransitions:
    async def test_skip_ahead_is_conflict(self, task_service, new_task, admin):
        task = await new_task()
        with pytest.raises(TransitionConflictError) as exc_info:
            await task_service.pickup_task(admin, task.task_id)
        assert exc_info.value.details == {
            "current_status": LegacyStatus.PLANNED,
            "requested_status": LegacyStatus.PICKED_UP,
        }

    async def test_non_owner_cannot_progress(self, task_service, new_task, driver, other_driver):
        task = await new_task()
        await task_service.claim_task(driver, task.task_id)
        with pytest.raises(ForbiddenError):
            await task_service.pickup_task(other_driver, task.task_id)

    async def test_automotive_operation_on_legacy_task(self, task_service, new_task, driver):
        task = await new_task()
        with pytest.raises(ValidationFailedError):
            await task_service.set_status(driver, task.task_id, AutomotiveStatus.PICKED_UP)


class TestCancel:
    async def test_cancel_is_idempotent(self, task_service, new_task, admin, clock):
        task = await new_task()
        result = await task_service.cancel_task(admin, task.task_id, reason="customer closed")
        assert result.task.status == LegacyStatus.CANCELLED
        assert result.task.cancelled_at == clock.now
        assert result.task.cancellation_reason == "customer closed"

        again = await task_service.cancel_task(admin, task.task_id)
        assert again.already_done

    async def test_cannot_cancel_completed(self, task_service, new_task, driver):
        task = await new_task(planned_quantity=10)
        await task_service.claim_task(driver, task.task_id)
        await task_service.pickup_task(driver, task.task_id)
        await task_service.deliver_task(driver, task.task_id)

        with pytest.raises(TransitionConflictError):
            await task_service.cancel_task(driver, task.task_id)

    async def test_driver_cannot_cancel_unowned(self, task_service, new_task, driver):
        task = await new_task()
        with pytest.raises(ForbiddenError):
            await task_service.cancel_task(driver, task.task_id)


class TestHandover:
    async def test_new_owner_takes_over(self, task_service, new_task, driver, other_driver):
        task = await new_task()
        await task_service.claim_task(driver, task.task_id)

        result = await task_service.handover_task(driver, task.task_id, "driver-2")
        assert result.task.claimed_by_user_id == "driver-2"
        assert result.task.handover_at is not None

        await task_service.pickup_task(other_driver, task.task_id)
        with pytest.raises(ForbiddenError):
            await task_service.pickup_task(driver, task.task_id)

        types = [a.type for a in await task_service.list_activity(task.task_id)]
        assert ActivityType.TASK_HANDOVER in types

    async def test_handover_to_current_owner_is_idempotent(self, task_service, new_task, driver):
        task = await new_task()
        await task_service.claim_task(driver, task.task_id)
        result = await task_service.handover_task(driver, task.task_id, "driver-1")
        assert result.already_done

    async def test_terminal_task_cannot_be_handed_over(self, task_service, new_task, admin):
        task = await new_task()
        await task_service.cancel_task(admin, task.task_id)
        with pytest.raises(ConflictError) as exc_info:
            await task_service.handover_task(admin, task.task_id, "driver-2")
        assert exc_info.value.details["current_status"] == LegacyStatus.CANCELLED
