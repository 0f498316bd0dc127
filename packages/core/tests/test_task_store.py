"""Store 层单元测试

测试内容：
1. 任务写入/读取往返（含 OFFEN 历史数据归一）
2. dedup_key 唯一约束下的 insert_task_if_absent
3. 条件更新：状态不符或已有归属时不命中
4. 列表筛选
5. 目的容器条件写入与承运箱占用
"""

from datetime import date

import pytest
from haulflow.core.models import (
    AutomotiveStatus,
    BoxStatus,
    LegacyStatus,
    TaskType,
    WorkflowFamily,
)


@pytest.fixture
async def seeded(store_group, seed_catalog):
    await seed_catalog()
    await store_group.conn.commit()
    return store_group


class TestTaskPersistence:
    async def test_round_trip(self, seeded, make_task):
        task = make_task(
            source_container_id="src-metal",
            planned_quantity=120.0,
            scheduled_for=date(2026, 3, 14),
        )
        await seeded.task_store.create_task(task)

        loaded = await seeded.task_store.get_task("task-1")
        assert loaded == task

    async def test_legacy_offen_row_loads_as_planned(self, seeded, make_task):
        await seeded.task_store.create_task(make_task())
        await seeded.conn.execute("UPDATE tasks SET status = 'OFFEN' WHERE task_id = 'task-1'")

        loaded = await seeded.task_store.get_task("task-1")
        assert loaded.status == LegacyStatus.PLANNED

    async def test_missing_task_is_none(self, seeded):
        assert await seeded.task_store.get_task("nope") is None


class TestInsertIfAbsent:
    async def test_second_insert_with_same_key_is_noop(self, seeded, make_task):
        first = make_task("t-1", dedup_key="daily-full:stand-1:2026-03-14")
        second = make_task("t-2", dedup_key="daily-full:stand-1:2026-03-14")

        assert await seeded.task_store.insert_task_if_absent(first)
        assert not await seeded.task_store.insert_task_if_absent(second)

        existing = await seeded.task_store.get_task_by_dedup_key(
            "daily-full:stand-1:2026-03-14"
        )
        assert existing.task_id == "t-1"
        assert await seeded.task_store.get_task("t-2") is None

    async def test_null_keys_do_not_collide(self, seeded, make_task):
        assert await seeded.task_store.insert_task_if_absent(make_task("t-1"))
        assert await seeded.task_store.insert_task_if_absent(make_task("t-2"))


class TestConditionalUpdate:
    async def test_hits_when_status_matches(self, seeded, make_task, now):
        await seeded.task_store.create_task(make_task())
        updated = await seeded.task_store.update_task_if_status(
            "task-1",
            LegacyStatus.PLANNED,
            {"status": LegacyStatus.ASSIGNED, "assigned_to": "u1", "assigned_at": now},
            updated_at=now,
        )
        assert updated

        task = await seeded.task_store.get_task("task-1")
        assert task.status == LegacyStatus.ASSIGNED
        assert task.assigned_at == now

    async def test_misses_on_stale_status(self, seeded, make_task, now):
        await seeded.task_store.create_task(make_task(status=LegacyStatus.ASSIGNED))
        updated = await seeded.task_store.update_task_if_status(
            "task-1", LegacyStatus.PLANNED, {"status": LegacyStatus.ASSIGNED}, updated_at=now
        )
        assert not updated

    async def test_require_unowned_misses_once_claimed(self, seeded, make_task, now):
        await seeded.task_store.create_task(make_task(claimed_by_user_id="u1"))
        updated = await seeded.task_store.update_task_if_status(
            "task-1",
            LegacyStatus.PLANNED,
            {"claimed_by_user_id": "u2"},
            updated_at=now,
            require_unowned=True,
        )
        assert not updated
        assert (await seeded.task_store.get_task("task-1")).claimed_by_user_id == "u1"

    async def test_immutable_column_rejected(self, seeded, make_task, now):
        await seeded.task_store.create_task(make_task())
        with pytest.raises(ValueError):
            await seeded.task_store.update_task_if_status(
                "task-1", LegacyStatus.PLANNED, {"workflow": "AUTOMOTIVE"}, updated_at=now
            )


class TestListTasks:
    async def test_filters(self, seeded, make_task):
        await seeded.task_store.create_task(make_task("t-1", assigned_to="u1"))
        await seeded.task_store.create_task(make_task("t-2", claimed_by_user_id="u1"))
        await seeded.task_store.create_task(
            make_task(
                "t-3",
                workflow=WorkflowFamily.AUTOMOTIVE,
                task_type=TaskType.DAILY_FULL,
                dedup_key="k-3",
            )
        )
        await seeded.task_store.create_task(
            make_task(
                "t-4",
                workflow=WorkflowFamily.AUTOMOTIVE,
                task_type=TaskType.DAILY_FULL,
                dedup_key="k-4",
                claimed_by_user_id="u2",
            )
        )

        mine = await seeded.task_store.list_tasks(assigned_to="u1")
        assert {t.task_id for t in mine} == {"t-1", "t-2"}

        daily = await seeded.task_store.list_tasks(task_type=TaskType.DAILY_FULL)
        assert {t.task_id for t in daily} == {"t-3", "t-4"}

        open_daily = await seeded.task_store.list_open_daily_tasks(AutomotiveStatus.OPEN)
        assert [t.task_id for t in open_daily] == ["t-3"]

        assert len(await seeded.task_store.list_tasks(limit=2)) == 2


class TestContainerWrites:
    async def test_apply_transfer_respects_capacity(self, store_group, seed_catalog, now):
        await seed_catalog(dst_metal_amount=900)
        store = store_group.container_store

        assert not await store.apply_transfer("dst-metal", "metal", 150, updated_at=now)
        assert await store.apply_transfer("dst-metal", "metal", 100, updated_at=now)

        container = await store.get_destination_container("dst-metal")
        assert container.current_amount == 1000
        assert container.remaining_capacity == 0

    async def test_apply_transfer_rejects_material_mismatch(self, seeded, now):
        assert not await seeded.container_store.apply_transfer(
            "dst-paper", "metal", 1, updated_at=now
        )

    async def test_reset_is_conditional(self, store_group, seed_catalog, now):
        await seed_catalog(dst_metal_amount=300)
        store = store_group.container_store

        assert not await store.reset_destination("dst-metal", expected_amount=200, emptied_at=now)
        assert await store.reset_destination("dst-metal", expected_amount=300, emptied_at=now)

        container = await store.get_destination_container("dst-metal")
        assert container.current_amount == 0
        assert container.last_emptied_at == now


class TestBoxes:
    async def test_occupy_and_release(self, seeded, now):
        stands = seeded.stand_store
        assert await stands.occupy_box("box-1", "t-1", now)
        # 被其他任务占用时不能再占用或释放
        assert not await stands.occupy_box("box-1", "t-2", now)
        assert not await stands.release_box("box-1", "t-2", now)

        assert await stands.release_box("box-1", "t-1", now)
        box = await stands.get_box("box-1")
        assert box.status == BoxStatus.AVAILABLE
        assert box.current_task_id is None

    async def test_daily_stands(self, seeded):
        stands = await seeded.stand_store.list_daily_stands()
        assert [s.stand_id for s in stands] == ["stand-1"]
