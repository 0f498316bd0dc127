"""装载量重建模块

destination_containers.current_amount 是 fill_history 流水的缓存投影。
本模块按流水重新计算每个目的容器的装载量，并报告与缓存值的偏差。
"""

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog

from .store import StoreGroup

log = structlog.get_logger()

# 浮点累加误差容忍度
_EPSILON = 1e-9


@dataclass
class FillDrift:
    """单个容器的缓存值与流水合计之差"""

    container_id: str
    cached_amount: float
    ledger_amount: float

    @property
    def delta(self) -> float:
        return self.ledger_amount - self.cached_amount


@dataclass
class RebuildReport:
    container_count: int = 0
    drifts: list[FillDrift] = field(default_factory=list)
    # 流水合计超出容量等无法写回的容器
    skipped: list[FillDrift] = field(default_factory=list)


def compute_drifts(
    cached: dict[str, float],
    ledger_totals: dict[str, float],
) -> list[FillDrift]:
    """比较缓存装载量与流水合计，返回存在偏差的容器

    Args:
        cached: container_id -> current_amount
        ledger_totals: container_id -> SUM(amount_added)

    Returns:
        偏差列表，按 container_id 排序
    """
    drifts: list[FillDrift] = []
    for container_id in sorted(cached):
        ledger_amount = ledger_totals.get(container_id, 0.0)
        if abs(ledger_amount - cached[container_id]) > _EPSILON:
            drifts.append(FillDrift(container_id, cached[container_id], ledger_amount))
    return drifts


async def rebuild_fill_levels(stores: StoreGroup, apply: bool = True) -> RebuildReport:
    """从 fill_history 重建所有目的容器的 current_amount

    流程：
    1. 读取所有目的容器的缓存装载量
    2. 按容器汇总 fill_history
    3. 对存在偏差的容器写回流水合计（apply=False 时只报告）

    Args:
        stores: Store 实例组
        apply: 是否写回

    Returns:
        RebuildReport
    """
    start_time = time.monotonic()
    report = RebuildReport()

    async with stores.atomic():
        containers = await stores.container_store.list_destination_containers()
        totals = await stores.ledger_store.sum_fill_by_container()
        report.container_count = len(containers)

        capacities = {c.container_id: c.max_capacity for c in containers}
        drifts = compute_drifts({c.container_id: c.current_amount for c in containers}, totals)
        now = datetime.now(UTC)

        for drift in drifts:
            # 流水合计越界时不能写回（违反表约束），只报告
            if not 0 <= drift.ledger_amount <= capacities[drift.container_id]:
                report.skipped.append(drift)
                log.warning(
                    "fill_level_out_of_bounds",
                    container_id=drift.container_id,
                    ledger_amount=drift.ledger_amount,
                    max_capacity=capacities[drift.container_id],
                )
                continue
            report.drifts.append(drift)
            if apply:
                await stores.container_store.set_current_amount(
                    drift.container_id, drift.ledger_amount, updated_at=now
                )

    elapsed_ms = int((time.monotonic() - start_time) * 1000)
    await log.ainfo(
        "fill_level_rebuild_completed",
        container_count=report.container_count,
        drift_count=len(report.drifts),
        skipped_count=len(report.skipped),
        applied=apply,
        elapsed_ms=elapsed_ms,
    )
    return report
