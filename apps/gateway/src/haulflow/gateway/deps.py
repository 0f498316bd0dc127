"""依赖注入模块 -- 通过 FastAPI Depends 注入 Store、服务与调用者身份

Store 与调度器实例通过 app.state 管理，在 lifespan 中初始化/清理。
调用者身份由外部认证中间件写入请求头，此处只做解析。
"""

from fastapi import Depends, Header, Request
from haulflow.core.exceptions import UnauthenticatedError, ValidationFailedError
from haulflow.core.models import Actor, UserRole
from haulflow.core.store import StoreGroup

from .services.container_service import ContainerService
from .services.daily_scheduler import DailyScheduler
from .services.task_service import TaskService

_FALSE_VALUES = ("0", "false", "no", "off")


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_scheduler(request: Request) -> DailyScheduler:
    """从 app.state 获取 DailyScheduler 实例"""
    return request.app.state.scheduler


def get_task_service(store_group: StoreGroup = Depends(get_store_group)) -> TaskService:
    return TaskService(store_group)


def get_container_service(
    store_group: StoreGroup = Depends(get_store_group),
) -> ContainerService:
    return ContainerService(store_group)


def get_actor(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
    x_user_active: str | None = Header(default=None),
) -> Actor:
    """从 X-User-Id / X-User-Role / X-User-Active 请求头构建调用者"""
    if not x_user_id:
        raise UnauthenticatedError("X-User-Id header is required")
    role = (x_user_role or UserRole.DRIVER).upper()
    if role not in UserRole.__members__:
        raise ValidationFailedError(f"Unknown role {x_user_role}", field="X-User-Role")
    return Actor(
        user_id=x_user_id,
        role=UserRole(role),
        is_active=(x_user_active or "true").lower() not in _FALSE_VALUES,
    )
