"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭 + 每日任务调度器启停 + 路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from haulflow.core.config import get_db_path, load_scheduler_config
from haulflow.core.store import create_store_group

from .errors import register_error_handlers
from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import containers, health, lifecycle, scheduler, tasks
from .services.daily_scheduler import DailyScheduler

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 DB 与调度器，关闭时停止调度器并关闭连接"""
    db_path = get_db_path()
    store_group = await create_store_group(db_path)
    app.state.store_group = store_group

    scheduler_config = load_scheduler_config()
    daily_scheduler = DailyScheduler(store_group, scheduler_config)
    app.state.scheduler = daily_scheduler
    if scheduler_config.enabled:
        await daily_scheduler.start()
    else:
        log.info("daily_scheduler_disabled")

    log.info("gateway_started", db_path=db_path, timezone=scheduler_config.timezone)

    yield

    await daily_scheduler.stop()
    await store_group.close()
    log.info("gateway_stopped")


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="HaulFlow Gateway",
        version="0.1.0",
        description="HaulFlow 取送任务生命周期 API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging，Logging 位于最外层）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    register_error_handlers(app)

    # 初始化日志
    setup_logging()
    setup_logfire()

    # 注册路由
    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(lifecycle.router, tags=["lifecycle"])
    app.include_router(containers.router, tags=["containers"])
    app.include_router(scheduler.router, tags=["scheduler"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
