"""
Streak calculation over a ritual's completion history.

Time is cut into periods by a ``PeriodPolicy``. A period is satisfied when at
least one completion falls inside it, and a streak is a run of consecutive
satisfied periods. Everything in this module is pure: "now" is always passed
in by the caller.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional

from ritual_engine.models import Frequency

PeriodFn = Callable[[datetime], int]

MAX_CUSTOM_INTERVAL = 365
MAX_CUSTOM_GRACE = 30

_CUSTOM_RE = re.compile(
    r"^every\s+(?P<n>\d+)\s+(?P<unit>day|week|month)s?(?:\s+grace\s+(?P<grace>\d+))?$"
)


def day_index(ts: datetime) -> int:
    return ts.date().toordinal()


def week_index(ts: datetime) -> int:
    # ordinal 1 (0001-01-01) is a Monday, so weeks start on Monday
    return (ts.date().toordinal() - 1) // 7


def month_index(ts: datetime) -> int:
    return ts.year * 12 + ts.month - 1


@dataclass(frozen=True)
class PeriodPolicy:
    """
    Maps a timestamp to an integer period number; consecutive periods have
    consecutive numbers. ``grace`` is how many empty periods may sit inside a
    run (or after it, for the current streak) without breaking it.
    """

    period_of: PeriodFn
    grace: int = 0
    label: str = "custom"


DAILY = PeriodPolicy(day_index, label="daily")
WEEKLY = PeriodPolicy(week_index, label="weekly")
MONTHLY = PeriodPolicy(month_index, label="monthly")

_UNIT_INDEX = {"day": day_index, "week": week_index, "month": month_index}


def parse_custom_frequency(expression: str) -> PeriodPolicy:
    """
    Parse ``every <N> <day|week|month>[s] [grace <K>]``.

    >>> parse_custom_frequency("every 2 days").grace
    0
    """
    match = _CUSTOM_RE.match(expression.strip().lower())
    if not match:
        raise ValueError(
            "expected 'every <N> <days|weeks|months>' optionally followed by 'grace <K>'"
        )
    n = int(match.group("n"))
    grace = int(match.group("grace") or 0)
    if not 1 <= n <= MAX_CUSTOM_INTERVAL:
        raise ValueError(f"interval must be between 1 and {MAX_CUSTOM_INTERVAL}")
    if grace > MAX_CUSTOM_GRACE:
        raise ValueError(f"grace must be at most {MAX_CUSTOM_GRACE}")

    base = _UNIT_INDEX[match.group("unit")]
    if n == 1:
        period_of = base
    else:
        def period_of(ts: datetime, _base=base, _n=n) -> int:
            return _base(ts) // _n

    return PeriodPolicy(period_of, grace=grace, label=expression.strip())


def policy_for(frequency: Frequency, custom_frequency: Optional[str] = None) -> PeriodPolicy:
    if frequency == Frequency.daily:
        return DAILY
    if frequency == Frequency.weekly:
        return WEEKLY
    if frequency == Frequency.monthly:
        return MONTHLY
    if not custom_frequency:
        raise ValueError("custom frequency requires an expression")
    return parse_custom_frequency(custom_frequency)


@dataclass(frozen=True)
class StreakResult:
    current: int
    best: int


class _RunTracker:
    """Folds sorted period numbers into the running and best run lengths."""

    def __init__(self, max_gap: int):
        self.max_gap = max_gap
        self.last_period: Optional[int] = None
        self.run = 0
        self.best = 0

    def feed(self, period: int) -> None:
        if self.last_period is not None and period - self.last_period <= self.max_gap:
            self.run += 1
        else:
            self.run = 1
        self.last_period = period
        self.best = max(self.best, self.run)


def calculate_streaks(
    timestamps: Iterable[datetime],
    policy: PeriodPolicy,
    now: datetime,
) -> StreakResult:
    periods = sorted({policy.period_of(ts) for ts in timestamps})
    if not periods:
        return StreakResult(current=0, best=0)

    tracker = _RunTracker(max_gap=policy.grace + 1)
    for period in periods:
        tracker.feed(period)

    latest = periods[-1]
    reference = max(policy.period_of(now), latest)
    current = tracker.run if reference - latest <= policy.grace else 0
    return StreakResult(current=current, best=tracker.best)


def is_streak_alive(
    policy: PeriodPolicy,
    last_completed_at: Optional[datetime],
    now: datetime,
) -> bool:
    """Whether a streak ending at ``last_completed_at`` still counts at ``now``."""
    if last_completed_at is None:
        return False
    return policy.period_of(now) - policy.period_of(last_completed_at) <= policy.grace
