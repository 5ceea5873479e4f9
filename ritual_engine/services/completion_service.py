"""
Completion Recorder: appends completion events and keeps the ritual's
derived state in step with the log.

Append, recompute and derived-state write share one transaction. Writers of
the same ritual are serialized by ``Database.ritual_lock`` and the final
write is a version compare-and-set, retried on conflict.
"""

import logging
import math
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import func, select

from ritual_engine.config import settings
from ritual_engine.db import Database
from ritual_engine.errors import RitualInactive
from ritual_engine.models import RitualCompletion, RitualStep, utcnow
from ritual_engine.schema.response import Page, RitualCompletionRead
from ritual_engine.services.authorization import authorize_ritual
from ritual_engine.services.derived_state import refresh_derived_state, retry_on_conflict
from ritual_engine.services.validation import (
    check_step_references,
    validate_completion_draft,
    validate_page,
)

logger = logging.getLogger("ritual_engine")


class CompletionRecorder:
    def __init__(
        self,
        db: Database,
        *,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: Optional[int] = None,
        max_page_size: Optional[int] = None,
    ):
        self.db = db
        self.clock = clock
        self.max_attempts = max_attempts or settings.max_commit_retries
        self.max_page_size = max_page_size or settings.max_page_size

    async def complete(self, ritual_id: str, requester_id: str, raw: Any) -> RitualCompletionRead:
        async with self.db.ritual_lock(ritual_id):
            completion = await retry_on_conflict(
                ritual_id,
                lambda: self._append_and_recompute(ritual_id, requester_id, raw),
                self.max_attempts,
            )
        return RitualCompletionRead.model_validate(completion)

    async def _append_and_recompute(
        self, ritual_id: str, requester_id: str, raw: Any
    ) -> RitualCompletion:
        async with self.db.session() as session:
            ritual = await authorize_ritual(session, ritual_id, requester_id)
            if not ritual.is_active:
                raise RitualInactive(ritual_id)
            draft = validate_completion_draft(raw)
            step_ids = (
                await session.scalars(select(RitualStep.id).where(RitualStep.ritual_id == ritual_id))
            ).all()
            check_step_references(draft, step_ids)

            now = self.clock()
            completion = RitualCompletion(
                ritual_id=ritual_id,
                user_id=requester_id,
                completed_at=now,
                **draft.model_dump(),
            )
            session.add(completion)
            await session.flush()
            streaks = await refresh_derived_state(session, ritual, now)

        logger.info(
            "ritual_completed",
            extra={
                "ritual_id": ritual_id,
                "completion_id": completion.id,
                "streak_count": streaks.current,
                "best_streak": streaks.best,
                "total_completions": ritual.total_completions,
            },
        )
        return completion

    async def list_completions(
        self,
        ritual_id: str,
        requester_id: str,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Page[RitualCompletionRead]:
        """The ritual's completion log, newest first."""
        limit = settings.default_page_size if limit is None else limit
        async with self.db.session() as session:
            await authorize_ritual(session, ritual_id, requester_id)
            validate_page(page, limit, self.max_page_size)
            total = await session.scalar(
                select(func.count())
                .select_from(RitualCompletion)
                .where(RitualCompletion.ritual_id == ritual_id)
            ) or 0
            rows = (
                await session.scalars(
                    select(RitualCompletion)
                    .where(RitualCompletion.ritual_id == ritual_id)
                    .order_by(RitualCompletion.completed_at.desc(), RitualCompletion.id.desc())
                    .offset((page - 1) * limit)
                    .limit(limit)
                )
            ).all()
        return Page[RitualCompletionRead](
            items=[RitualCompletionRead.model_validate(c) for c in rows],
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit),
        )
