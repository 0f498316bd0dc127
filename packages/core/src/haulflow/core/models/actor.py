"""调用者身份

身份由外部认证中间件校验后提供，此处只承载结果。
"""

from pydantic import BaseModel, Field

from .enums import UserRole


class Actor(BaseModel):
    """已认证的调用者"""

    user_id: str = Field(min_length=1)
    role: UserRole = Field(default=UserRole.DRIVER)
    is_active: bool = Field(default=True)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
