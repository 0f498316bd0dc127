"""TraceMiddleware -- 为任务/容器操作绑定实体 ID

从 /api/tasks/{task_id}/... 与 /api/containers/{container_id}/... 路径中提取 ID，
绑定到 structlog contextvars，贯穿该请求内的所有日志。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# 路径段 -> 绑定的上下文键
_ENTITY_SEGMENTS = {
    "tasks": "task_id",
    "containers": "container_id",
}


def extract_entity_ids(path: str) -> dict[str, str]:
    """从 /api/<segment>/<id>[/...] 中提取实体 ID"""
    parts = [part for part in path.split("/") if part]
    found: dict[str, str] = {}
    for index, part in enumerate(parts[:-1]):
        key = _ENTITY_SEGMENTS.get(part)
        if key and index > 0 and parts[index - 1] == "api":
            found[key] = parts[index + 1]
    return found


class TraceMiddleware(BaseHTTPMiddleware):
    """实体级追踪中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        entity_ids = extract_entity_ids(request.url.path)
        if entity_ids:
            structlog.contextvars.bind_contextvars(**entity_ids)

        return await call_next(request)
