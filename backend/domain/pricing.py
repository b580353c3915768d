"""Integer cost arithmetic for PlayStation sessions.

计费规则:
- 每个分段按 ``ceil(毫秒 / 60000)`` 计分钟（不足一分钟按一分钟计）；
- 分段费用 = round_half_up(时费 * 分钟 / 60)，中间值全部是整数 (piaster·minute)；
- 会话游戏费用 = 各分段费用之和 + extra_charges。

Everything here is a pure function of its arguments and the supplied ``now``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .segment import Segment
    from .session import Session


MS_PER_MINUTE = 60_000
MINUTES_PER_HOUR = 60
_ONE_MS = timedelta(milliseconds=1)


def elapsed_ms(start: datetime, end: datetime) -> int:
    """Whole milliseconds from ``start`` to ``end`` (negative if reversed)."""
    return (end - start) // _ONE_MS


def billed_minutes(raw_ms: int) -> int:
    """Round up to the next whole minute; zero or negative time bills nothing."""
    if raw_ms <= 0:
        return 0
    return -(-raw_ms // MS_PER_MINUTE)


def div_round_half_up(numerator: int, denominator: int) -> int:
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    if numerator < 0:
        return -div_round_half_up(-numerator, denominator)
    return (2 * numerator + denominator) // (2 * denominator)


def segment_cost(hourly_rate: int, minutes: int) -> int:
    return div_round_half_up(hourly_rate * minutes, MINUTES_PER_HOUR)


@dataclass(frozen=True)
class SegmentCost:
    segment_id: str
    mode: str
    hourly_rate: int
    billable_ms: int
    minutes: int
    cost: int


@dataclass(frozen=True)
class CostBreakdown:
    segments: List[SegmentCost] = field(default_factory=list)
    extra_charges: int = 0

    @property
    def segment_total(self) -> int:
        return sum(item.cost for item in self.segments)

    @property
    def gaming_cost(self) -> int:
        return self.segment_total + self.extra_charges

    @property
    def elapsed_minutes(self) -> int:
        return sum(item.minutes for item in self.segments)

    @property
    def billable_ms(self) -> int:
        return sum(max(0, item.billable_ms) for item in self.segments)


def segment_billable_ms(
    segment: "Segment",
    session: "Session",
    now: datetime,
    *,
    is_last: bool,
) -> int:
    endpoint = segment.ended_at if segment.ended_at is not None else now
    raw_ms = elapsed_ms(segment.started_at, endpoint) - segment.paused_ms
    if is_last and session.is_paused:
        # 暂停区间属于仍然打开的最后一段，不计费
        raw_ms -= session.current_pause_ms(now)
    return raw_ms


def compute_cost(session: "Session", segments: Iterable["Segment"], now: datetime) -> CostBreakdown:
    ordered = sorted(segments, key=lambda seg: (seg.started_at, seg.is_open))
    items: List[SegmentCost] = []
    for index, segment in enumerate(ordered):
        raw_ms = segment_billable_ms(segment, session, now, is_last=index == len(ordered) - 1)
        minutes = billed_minutes(raw_ms)
        items.append(
            SegmentCost(
                segment_id=segment.segment_id,
                mode=str(getattr(segment.mode, "value", segment.mode)),
                hourly_rate=segment.hourly_rate_snapshot,
                billable_ms=raw_ms,
                minutes=minutes,
                cost=segment_cost(segment.hourly_rate_snapshot, minutes),
            )
        )
    return CostBreakdown(segments=items, extra_charges=session.extra_charges)
