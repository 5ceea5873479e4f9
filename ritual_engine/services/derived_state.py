"""
Derived-state maintenance for a ritual.

streak_count, best_streak, total_completions and last_completed_at are always
rewritten from the full completion log, never incremented, and the write is a
compare-and-set on the ritual's version column.
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, TypeVar

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ritual_engine.errors import ConflictRetryExhausted, VersionConflict
from ritual_engine.models import Ritual, RitualCompletion
from ritual_engine.services.streaks import StreakResult, calculate_streaks, policy_for

logger = logging.getLogger("ritual_engine")

R = TypeVar("R")


async def refresh_derived_state(session: AsyncSession, ritual: Ritual, now: datetime) -> StreakResult:
    """
    Recompute the derived fields of ``ritual`` inside the caller's transaction.
    Raises VersionConflict if the row changed since ``ritual`` was loaded.
    """
    timestamps = (
        await session.scalars(
            select(RitualCompletion.completed_at)
            .where(RitualCompletion.ritual_id == ritual.id)
            .order_by(RitualCompletion.completed_at)
        )
    ).all()
    result = calculate_streaks(timestamps, policy_for(ritual.frequency, ritual.custom_frequency), now)

    expected_version = ritual.version
    outcome = await session.execute(
        update(Ritual)
        .where(Ritual.id == ritual.id, Ritual.version == expected_version)
        .values(
            streak_count=result.current,
            best_streak=result.best,
            total_completions=len(timestamps),
            last_completed_at=timestamps[-1] if timestamps else None,
            version=expected_version + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if outcome.rowcount != 1:
        raise VersionConflict(ritual.id)

    await session.refresh(ritual)
    return result


async def bump_version(session: AsyncSession, ritual: Ritual, now: datetime) -> None:
    """Version compare-and-set for writes that leave the derived fields alone."""
    outcome = await session.execute(
        update(Ritual)
        .where(Ritual.id == ritual.id, Ritual.version == ritual.version)
        .values(version=ritual.version + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if outcome.rowcount != 1:
        raise VersionConflict(ritual.id)
    await session.refresh(ritual)


async def retry_on_conflict(
    ritual_id: str,
    operation: Callable[[], Awaitable[R]],
    max_attempts: int,
) -> R:
    """
    Run ``operation`` (a whole transaction) until it commits without a
    version conflict, at most ``max_attempts`` times.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except VersionConflict:
            logger.warning(
                "ritual_version_conflict",
                extra={"ritual_id": ritual_id, "attempt": attempt, "max_attempts": max_attempts},
            )
    raise ConflictRetryExhausted(ritual_id, max_attempts)
