"""apps/gateway 测试配置 -- FastAPI app + httpx AsyncClient + 调用者身份"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from haulflow.core.config import SchedulerConfig
from haulflow.core.models import Actor, UserRole
from haulflow.gateway.services.container_service import ContainerService
from haulflow.gateway.services.daily_scheduler import DailyScheduler
from haulflow.gateway.services.task_service import TaskService
from httpx import ASGITransport, AsyncClient


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-User-Id": "admin-1", "X-User-Role": "ADMIN"}


@pytest.fixture
def driver_headers():
    """司机身份请求头工厂"""

    def _headers(user_id: str = "driver-1") -> dict[str, str]:
        return {"X-User-Id": user_id, "X-User-Role": "DRIVER"}

    return _headers


class FakeClock:
    """可手动拨动的时钟"""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    # 柏林时间 2026-03-14 10:00
    return FakeClock(datetime(2026, 3, 14, 9, 0, tzinfo=UTC))


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id="admin-1", role=UserRole.ADMIN)


@pytest.fixture
def driver() -> Actor:
    return Actor(user_id="driver-1")


@pytest.fixture
def other_driver() -> Actor:
    return Actor(user_id="driver-2")


@pytest.fixture
def scheduler_config() -> SchedulerConfig:
    return SchedulerConfig(enabled=False, timezone="Europe/Berlin")


@pytest.fixture
def task_service(store_group, clock) -> TaskService:
    return TaskService(store_group, clock=clock)


@pytest.fixture
def container_service(store_group, clock) -> ContainerService:
    return ContainerService(store_group, clock=clock)


@pytest.fixture
def scheduler(store_group, scheduler_config, clock) -> DailyScheduler:
    return DailyScheduler(store_group, scheduler_config, clock=clock)


@pytest_asyncio.fixture
async def app(store_group, scheduler_config, tmp_db_path, monkeypatch):
    """创建测试用 FastAPI app 实例（绕过 lifespan，手动注入 app.state）"""
    monkeypatch.setenv("HAULFLOW_DB_PATH", str(tmp_db_path))
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")

    from haulflow.gateway.main import create_app

    application = create_app()
    application.state.store_group = store_group
    application.state.scheduler = DailyScheduler(store_group, scheduler_config)
    yield application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
