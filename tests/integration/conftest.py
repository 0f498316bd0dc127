"""集成测试共享 fixture -- 完整 app + 标准目录"""

from collections.abc import AsyncGenerator

import pytest_asyncio
from haulflow.core.config import SchedulerConfig
from haulflow.gateway.services.daily_scheduler import DailyScheduler
from httpx import ASGITransport, AsyncClient


@pytest_asyncio.fixture
async def integration_app(store_group, seed_catalog, tmp_db_path, monkeypatch):
    """集成测试用 FastAPI app（目录已写入，调度器不自动运行）"""
    monkeypatch.setenv("HAULFLOW_DB_PATH", str(tmp_db_path))
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")

    from haulflow.gateway.main import create_app

    await seed_catalog(dst_metal_amount=800)

    app = create_app()
    app.state.store_group = store_group
    app.state.scheduler = DailyScheduler(store_group, SchedulerConfig(enabled=False))
    yield app


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac
