"""ContainerService -- 目的容器查询与清空"""

from collections.abc import Callable
from datetime import UTC, datetime

import structlog
from haulflow.core.exceptions import ConflictError, ForbiddenError, NotFoundError
from haulflow.core.models import (
    ActivityLogEntry,
    ActivityType,
    Actor,
    DestinationContainer,
    FillHistoryEntry,
)
from haulflow.core.store import StoreGroup
from ulid import ULID

log = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ContainerService:
    """目的容器业务服务"""

    def __init__(
        self,
        store_group: StoreGroup,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._stores = store_group
        self._clock = clock

    async def get_container(self, container_id: str) -> DestinationContainer:
        container = await self._stores.container_store.get_destination_container(container_id)
        if container is None:
            raise NotFoundError("container", container_id)
        return container

    async def fill_history(self, container_id: str) -> list[FillHistoryEntry]:
        await self.get_container(container_id)
        return await self._stores.ledger_store.list_fill_history(container_id)

    async def reset_container(
        self, actor: Actor, container_id: str
    ) -> tuple[DestinationContainer, bool]:
        """清空目的容器（仅管理员）

        追加一条与原装载量等额的负数流水，current_amount 归零。

        Returns:
            (容器, already_done) -- 容器本来就是空的时 already_done=True，不写流水
        """
        if not actor.is_active or not actor.is_admin:
            raise ForbiddenError("Administrator role required", user_id=actor.user_id)

        container = await self.get_container(container_id)
        if container.current_amount == 0:
            return container, True

        now = self._clock()
        prior_amount = container.current_amount
        async with self._stores.atomic() as stores:
            reset = await stores.container_store.reset_destination(
                container_id, prior_amount, emptied_at=now
            )
            if not reset:
                raise ConflictError(
                    "Container amount changed while resetting, retry",
                    container_id=container_id,
                )
            await stores.ledger_store.append_fill(
                FillHistoryEntry(
                    entry_id=str(ULID()),
                    container_id=container_id,
                    amount_added=-prior_amount,
                    unit=container.quantity_unit,
                    is_reset=True,
                    recorded_by=actor.user_id,
                    created_at=now,
                )
            )
            await stores.ledger_store.append_activity(
                ActivityLogEntry(
                    activity_id=str(ULID()),
                    type=ActivityType.CONTAINER_RESET,
                    message=f"Container {container_id} emptied ({prior_amount} {container.quantity_unit})",
                    user_id=actor.user_id,
                    container_id=container_id,
                    metadata={"prior_amount": prior_amount, "unit": container.quantity_unit},
                    created_at=now,
                )
            )

        log.info(
            "container_reset",
            container_id=container_id,
            prior_amount=prior_amount,
            user_id=actor.user_id,
        )
        return await self.get_container(container_id), False
