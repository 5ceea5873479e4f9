"""
Analytics Aggregator: read-only statistics over a ritual's completion log.
"""

import statistics
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Iterable, Optional, Sequence

from sqlalchemy import select

from ritual_engine.config import settings
from ritual_engine.db import Database
from ritual_engine.models import RitualCompletion, utcnow
from ritual_engine.schema.response import (
    AnalyticsSummary,
    CompletionAverages,
    CompletionImprovements,
)
from ritual_engine.services.authorization import authorize_ritual
from ritual_engine.services.validation import parse_window

# summary field -> completion attribute
AVERAGED_FIELDS = {
    "duration": "duration_minutes",
    "mood_before": "mood_before",
    "mood_after": "mood_after",
    "energy_before": "energy_before",
    "energy_after": "energy_after",
}


def _mean(values: Iterable[Optional[float]]) -> Optional[float]:
    present = [v for v in values if v is not None]
    return statistics.fmean(present) if present else None


def _delta(after: Optional[float], before: Optional[float]) -> Optional[float]:
    if after is None or before is None:
        return None
    return after - before


def _consistency(days: Sequence[date]) -> float:
    """Distinct completion days over the days spanned by first..last completion."""
    if not days:
        return 0.0
    span = (max(days) - min(days)).days + 1
    return len(set(days)) / span


def summarize_completions(completions: Iterable[Any], *, start: date, end: date) -> AnalyticsSummary:
    """
    Pure aggregation over completion-like objects. Completions outside
    [start, end] are ignored; every day in the window appears in
    completions_by_day, including days with no completions.
    """
    window_days = (end - start).days + 1
    by_day = {start + timedelta(days=offset): 0 for offset in range(window_days)}
    in_window = [c for c in completions if start <= c.completed_at.date() <= end]
    for completion in in_window:
        by_day[completion.completed_at.date()] += 1

    averages = CompletionAverages(**{
        name: _mean(getattr(c, attr) for c in in_window)
        for name, attr in AVERAGED_FIELDS.items()
    })
    improvements = CompletionImprovements(
        mood=_delta(averages.mood_after, averages.mood_before),
        energy=_delta(averages.energy_after, averages.energy_before),
    )
    return AnalyticsSummary(
        window_days=window_days,
        start_date=start,
        end_date=end,
        total_completions=len(in_window),
        averages=averages,
        improvements=improvements,
        completions_by_day=by_day,
        consistency=_consistency([c.completed_at.date() for c in in_window]),
    )


class AnalyticsAggregator:
    def __init__(self, db: Database, *, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    async def analyze(
        self, ritual_id: str, requester_id: str, time_range: Optional[str] = None
    ) -> AnalyticsSummary:
        """Summary over the ``time_range`` calendar days ending today (UTC)."""
        async with self.db.session() as session:
            await authorize_ritual(session, ritual_id, requester_id)
            days = parse_window(time_range or settings.default_analytics_window)
            now = self.clock()
            end = now.date()
            start = end - timedelta(days=days - 1)
            completions = (
                await session.scalars(
                    select(RitualCompletion)
                    .where(
                        RitualCompletion.ritual_id == ritual_id,
                        RitualCompletion.completed_at >= datetime.combine(start, time.min),
                        RitualCompletion.completed_at <= now,
                    )
                    .order_by(RitualCompletion.completed_at)
                )
            ).all()

        summary = summarize_completions(completions, start=start, end=end)
        summary.ritual_id = ritual_id
        return summary
