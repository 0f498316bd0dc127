"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性、WAL 模式、调度器状态、磁盘空间。
"""

import shutil

import structlog
from fastapi import APIRouter, Request
from haulflow.core.store.sqlite_init import verify_wal_mode
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. sqlite: 数据库连通性
    2. wal_mode: WAL 模式是否生效（仅报告，不影响就绪）
    3. scheduler: running / stopped / disabled（仅报告）
    4. disk_space_mb: 磁盘剩余空间
    """
    checks: dict[str, object] = {}
    all_ok = True

    # 1. SQLite 连通性检查
    store_group = getattr(request.app.state, "store_group", None)
    if store_group is None:
        checks["sqlite"] = "error: store not initialized"
        all_ok = False
    else:
        try:
            cursor = await store_group.conn.execute("SELECT 1")
            await cursor.fetchone()
            checks["sqlite"] = "ok"
            checks["wal_mode"] = "ok" if await verify_wal_mode(store_group.conn) else "off"
        except Exception as e:
            log.warning("readiness_sqlite_failed", error=str(e))
            checks["sqlite"] = f"error: {e}"
            all_ok = False

    # 2. 调度器状态
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None or not scheduler.config.enabled:
        checks["scheduler"] = "disabled"
    else:
        checks["scheduler"] = "running" if scheduler.running else "stopped"

    # 3. 磁盘空间检查
    try:
        disk_usage = shutil.disk_usage("/")
        checks["disk_space_mb"] = disk_usage.free // (1024 * 1024)
    except OSError:
        checks["disk_space_mb"] = 0
        all_ok = False

    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={
            "status": "ready" if all_ok else "not_ready",
            "checks": checks,
        },
    )
