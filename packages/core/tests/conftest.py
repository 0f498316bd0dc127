"""packages/core 测试配置 -- 核心层 fixture"""

from datetime import UTC, datetime

import pytest
from haulflow.core.models import DestinationContainer, Task, WorkflowFamily

FIXED_NOW = datetime(2026, 3, 14, 9, 30, tzinfo=UTC)


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def make_task():
    """构造 Task 的工厂，只需给出与用例相关的字段"""

    def _make(task_id: str = "task-1", **overrides) -> Task:
        fields = {
            "task_id": task_id,
            "workflow": WorkflowFamily.LEGACY,
            "material_type": "metal",
            "created_at": FIXED_NOW,
            "updated_at": FIXED_NOW,
        }
        fields.update(overrides)
        return Task(**fields)

    return _make


@pytest.fixture
def make_destination():
    def _make(current_amount: float = 0.0, max_capacity: float = 1000.0, **overrides):
        fields = {
            "container_id": "dst-1",
            "material_type": "metal",
            "current_amount": current_amount,
            "max_capacity": max_capacity,
            "created_at": FIXED_NOW,
            "updated_at": FIXED_NOW,
        }
        fields.update(overrides)
        return DestinationContainer(**fields)

    return _make
