"""业务异常 -> HTTP 响应映射

响应体统一为 {"error": {"code": ..., "message": ..., **details}}。
基础设施异常不在此处理，由 FastAPI 默认返回 500。
"""

import structlog
from fastapi import FastAPI, Request
from haulflow.core.exceptions import (
    ConflictError,
    ForbiddenError,
    HaulFlowError,
    NotFoundError,
    UnauthenticatedError,
    ValidationFailedError,
)
from starlette.responses import JSONResponse

log = structlog.get_logger()

# 按 MRO 顺序匹配，子类优先
_STATUS_BY_ERROR: list[tuple[type[HaulFlowError], int]] = [
    (UnauthenticatedError, 401),
    (ForbiddenError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (ValidationFailedError, 422),
]


def status_for(error: HaulFlowError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return 400


def error_body(error: HaulFlowError) -> dict:
    return {
        "error": {
            "code": error.code,
            "message": error.message,
            **error.details,
        }
    }


async def haulflow_error_handler(request: Request, exc: HaulFlowError) -> JSONResponse:
    status_code = status_for(exc)
    await log.ainfo(
        "request_rejected",
        code=exc.code,
        status_code=status_code,
    )
    return JSONResponse(status_code=status_code, content=error_body(exc))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HaulFlowError, haulflow_error_handler)
