"""状态机流转表与校验

两套工作流共享同一个 Task 实体，由 Task.workflow 判别值选择对应的
Workflow 定义（流转表、终态集合、状态 -> 时间戳字段映射）。

校验函数是纯函数：不做 I/O，不抛业务异常，只返回 TransitionDecision。
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum

from .enums import AutomotiveStatus, LegacyStatus, WorkflowFamily


class TransitionRejection(StrEnum):
    """流转被拒绝的原因"""

    UNKNOWN_STATUS = "unknown_status"
    SAME_STATUS = "same_status"
    TERMINAL_STATUS = "terminal_status"
    NOT_NEXT_STEP = "not_next_step"


@dataclass(frozen=True)
class TransitionDecision:
    """流转校验结果"""

    allowed: bool
    from_status: str
    to_status: str
    reason: TransitionRejection | None = None

    def __bool__(self) -> bool:
        return self.allowed


@dataclass(frozen=True)
class Workflow:
    """单个工作流族的完整定义"""

    family: WorkflowFamily
    order: tuple[str, ...]
    cancelled: str
    terminal: frozenset[str]
    transitions: Mapping[str, frozenset[str]]
    timestamp_fields: Mapping[str, str]
    aliases: Mapping[str, str]

    @property
    def open_status(self) -> str:
        return self.order[0]

    @property
    def statuses(self) -> frozenset[str]:
        return frozenset(self.order) | {self.cancelled}

    def normalize(self, status: str) -> str:
        """将别名归一为规范状态值，未知状态抛 ValueError"""
        value = self.aliases.get(status, status)
        if value not in self.statuses:
            raise ValueError(f"unknown {self.family} status: {status}")
        return value

    def is_known(self, status: str) -> bool:
        return self.aliases.get(status, status) in self.statuses

    def is_terminal(self, status: str) -> bool:
        return status in self.terminal

    def check(self, from_status: str, to_status: str) -> TransitionDecision:
        """判断 from_status -> to_status 是否为合法的单步流转"""
        if not (self.is_known(from_status) and self.is_known(to_status)):
            return TransitionDecision(
                False, from_status, to_status, TransitionRejection.UNKNOWN_STATUS
            )
        current = self.normalize(from_status)
        target = self.normalize(to_status)
        if current == target:
            return TransitionDecision(False, current, target, TransitionRejection.SAME_STATUS)
        if current in self.terminal:
            return TransitionDecision(
                False, current, target, TransitionRejection.TERMINAL_STATUS
            )
        if target not in self.transitions[current]:
            return TransitionDecision(
                False, current, target, TransitionRejection.NOT_NEXT_STEP
            )
        return TransitionDecision(True, current, target)

    def has_reached(self, current: str, target: str) -> bool:
        """current 是否已处于 target 或其之后的前进状态（CANCELLED 不计入前进序列）"""
        current = self.normalize(current)
        target = self.normalize(target)
        if current == target:
            return True
        if current == self.cancelled or target == self.cancelled:
            return False
        return self.order.index(current) > self.order.index(target)

    def forward_path(self, current: str, target: str) -> list[str] | None:
        """返回从 current 前进到 target 的逐步状态序列（不含 current）

        每一步都必须通过 check()；无法前进时返回 None。
        """
        current = self.normalize(current)
        target = self.normalize(target)
        if current == self.cancelled or target == self.cancelled:
            return None
        start = self.order.index(current)
        end = self.order.index(target)
        if end <= start:
            return None
        path = list(self.order[start + 1 : end + 1])
        previous = current
        for step in path:
            if not self.check(previous, step):
                return None
            previous = step
        return path

    def timestamp_field(self, status: str) -> str | None:
        """状态 -> 需要写入的时间戳字段"""
        return self.timestamp_fields.get(self.normalize(status))


def _linear_transitions(order: tuple[str, ...], cancelled: str) -> dict[str, frozenset[str]]:
    """前进序列的每一步只允许到下一步或取消；最后一步与取消态为终态"""
    table: dict[str, frozenset[str]] = {}
    for index, status in enumerate(order[:-1]):
        table[status] = frozenset({order[index + 1], cancelled})
    table[order[-1]] = frozenset()
    table[cancelled] = frozenset()
    return table


_LEGACY_ORDER: tuple[str, ...] = (
    LegacyStatus.PLANNED,
    LegacyStatus.ASSIGNED,
    LegacyStatus.ACCEPTED,
    LegacyStatus.PICKED_UP,
    LegacyStatus.IN_TRANSIT,
    LegacyStatus.DELIVERED,
    LegacyStatus.COMPLETED,
)

_AUTOMOTIVE_ORDER: tuple[str, ...] = (
    AutomotiveStatus.OPEN,
    AutomotiveStatus.PICKED_UP,
    AutomotiveStatus.IN_TRANSIT,
    AutomotiveStatus.DROPPED_OFF,
    AutomotiveStatus.TAKEN_OVER,
    AutomotiveStatus.WEIGHED,
    AutomotiveStatus.DISPOSED,
)

LEGACY_WORKFLOW = Workflow(
    family=WorkflowFamily.LEGACY,
    order=_LEGACY_ORDER,
    cancelled=LegacyStatus.CANCELLED,
    terminal=frozenset({LegacyStatus.COMPLETED, LegacyStatus.CANCELLED}),
    transitions=_linear_transitions(_LEGACY_ORDER, LegacyStatus.CANCELLED),
    timestamp_fields={
        LegacyStatus.ASSIGNED: "assigned_at",
        LegacyStatus.ACCEPTED: "accepted_at",
        LegacyStatus.PICKED_UP: "picked_up_at",
        LegacyStatus.IN_TRANSIT: "in_transit_at",
        LegacyStatus.DELIVERED: "delivered_at",
        LegacyStatus.COMPLETED: "completed_at",
        LegacyStatus.CANCELLED: "cancelled_at",
    },
    # OFFEN 是 PLANNED 的历史命名，统一归一为 PLANNED
    aliases={"OFFEN": LegacyStatus.PLANNED},
)

AUTOMOTIVE_WORKFLOW = Workflow(
    family=WorkflowFamily.AUTOMOTIVE,
    order=_AUTOMOTIVE_ORDER,
    cancelled=AutomotiveStatus.CANCELLED,
    terminal=frozenset({AutomotiveStatus.DISPOSED, AutomotiveStatus.CANCELLED}),
    transitions=_linear_transitions(_AUTOMOTIVE_ORDER, AutomotiveStatus.CANCELLED),
    timestamp_fields={
        AutomotiveStatus.PICKED_UP: "picked_up_at",
        AutomotiveStatus.IN_TRANSIT: "in_transit_at",
        AutomotiveStatus.DROPPED_OFF: "dropped_off_at",
        AutomotiveStatus.TAKEN_OVER: "taken_over_at",
        AutomotiveStatus.WEIGHED: "weighed_at",
        AutomotiveStatus.DISPOSED: "disposed_at",
        AutomotiveStatus.CANCELLED: "cancelled_at",
    },
    aliases={},
)

WORKFLOWS: dict[WorkflowFamily, Workflow] = {
    WorkflowFamily.LEGACY: LEGACY_WORKFLOW,
    WorkflowFamily.AUTOMOTIVE: AUTOMOTIVE_WORKFLOW,
}


def get_workflow(family: WorkflowFamily | str) -> Workflow:
    """根据判别值获取工作流定义"""
    return WORKFLOWS[WorkflowFamily(family)]


def validate_transition(
    family: WorkflowFamily | str,
    from_status: str,
    to_status: str,
) -> TransitionDecision:
    """验证状态流转是否合法

    Args:
        family: 工作流族
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        TransitionDecision，bool(decision) 为 True 表示合法
    """
    return get_workflow(family).check(from_status, to_status)
