"""配置模块 -- 可通过环境变量覆盖

包含数据库路径、每日任务调度器配置、默认计量单位等可配置项。
"""

import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from pydantic import BaseModel, Field, field_validator

log = structlog.get_logger()


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("HAULFLOW_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "HAULFLOW_DB_PATH",
        str(_get_base_dir() / "sqlite" / "haulflow.db"),
    )


# 默认计量单位
DEFAULT_QUANTITY_UNIT: str = os.environ.get("HAULFLOW_DEFAULT_UNIT", "kg")

# 系统操作者（调度器等后台流程写审计时使用）
SYSTEM_ACTOR_ID: str = "system"


class SchedulerConfig(BaseModel):
    """每日任务调度器配置 -- 从环境变量加载

    环境变量:
        HAULFLOW_SCHEDULER_ENABLED: 是否随应用启动定时器（默认 true）
        HAULFLOW_TIMEZONE: 计算“今天”使用的固定时区（默认 Europe/Berlin）
        HAULFLOW_SCHEDULER_INITIAL_DELAY_S: 启动后首次运行的延迟（秒，默认 10）
        HAULFLOW_SCHEDULER_INTERVAL_S: 运行间隔（秒，默认 3600）
        HAULFLOW_DAILY_KEY_PREFIX: 每日任务去重键前缀（默认 daily-full）
    """

    enabled: bool = Field(default=True, description="是否启动定时器")
    timezone: str = Field(default="Europe/Berlin", description="固定时区")
    initial_delay_s: float = Field(default=10.0, ge=0, description="首次运行延迟（秒）")
    interval_s: float = Field(default=3600.0, ge=1, description="运行间隔（秒）")
    key_prefix: str = Field(default="daily-full", min_length=1, description="去重键前缀")

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone: {value}") from e
        return value

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def _float_from_env(env_var: str, default: float, minimum: float) -> float | None:
    val = os.environ.get(env_var)
    if not val:
        return None
    try:
        number = float(val)
    except ValueError:
        number = None
    if number is None or not number >= minimum:
        log.warning(
            "invalid_scheduler_config",
            env_var=env_var,
            value=val,
            minimum=minimum,
            fallback=default,
        )
        return None
    return number


def load_scheduler_config() -> SchedulerConfig:
    """从环境变量加载调度器配置

    数值无法解析或超出范围时记录 warning 并回退到默认值，不阻塞启动。
    """
    kwargs: dict = {}

    if val := os.environ.get("HAULFLOW_SCHEDULER_ENABLED"):
        kwargs["enabled"] = val.lower() not in ("0", "false", "no", "off")

    if val := os.environ.get("HAULFLOW_TIMEZONE"):
        kwargs["timezone"] = val

    delay = _float_from_env("HAULFLOW_SCHEDULER_INITIAL_DELAY_S", 10.0, minimum=0)
    if delay is not None:
        kwargs["initial_delay_s"] = delay

    interval = _float_from_env("HAULFLOW_SCHEDULER_INTERVAL_S", 3600.0, minimum=1)
    if interval is not None:
        kwargs["interval_s"] = interval

    if val := os.environ.get("HAULFLOW_DAILY_KEY_PREFIX"):
        kwargs["key_prefix"] = val

    return SchedulerConfig(**kwargs)
