"""
Ritual Registry: CRUD of ritual definitions and their ordered steps.

Derived streak fields are never written here except through
``refresh_derived_state`` (when the frequency policy changes).
"""

import logging
import math
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ritual_engine.config import settings
from ritual_engine.db import Database
from ritual_engine.errors import NotFound, Unauthorized, ValidationError
from ritual_engine.models import (
    Ritual,
    RitualCategory,
    RitualCompletion,
    RitualStep,
    utcnow,
)
from ritual_engine.schema.request import MAX_STEPS, RitualDraft
from ritual_engine.schema.response import DeleteAck, Page, RitualRead, RitualStepRead
from ritual_engine.services.authorization import authorize_ritual
from ritual_engine.services.derived_state import (
    bump_version,
    refresh_derived_state,
    retry_on_conflict,
)
from ritual_engine.services.streaks import is_streak_alive, policy_for
from ritual_engine.services.validation import (
    check_frequency_policy,
    validate_page,
    validate_ritual_draft,
    validate_ritual_patch,
    validate_step_draft,
    validate_step_patch,
)

logger = logging.getLogger("ritual_engine")


def place_step(steps: List[RitualStep], step: RitualStep) -> None:
    """
    Put ``step`` into ``steps`` at ``step.order``. If another step already
    holds that order, it and every later step move down by one.
    """
    others = [s for s in steps if s is not step]
    if any(s.order == step.order for s in others):
        for s in others:
            if s.order >= step.order:
                s.order += 1
    if all(s is not step for s in steps):
        steps.append(step)
    steps.sort(key=lambda s: s.order)


def build_ritual(owner_id: str, draft: RitualDraft, now: datetime) -> Tuple[Ritual, List[RitualStep]]:
    ritual = Ritual(
        user_id=owner_id,
        created_at=now,
        updated_at=now,
        **draft.model_dump(exclude={"steps"}),
    )
    steps: List[RitualStep] = []
    for step_draft in draft.steps:
        place_step(steps, RitualStep(ritual_id=ritual.id, created_at=now, **step_draft.model_dump()))
    return ritual, steps


def to_ritual_read(ritual: Ritual, steps: Sequence[RitualStep], now: datetime) -> RitualRead:
    read = RitualRead.model_validate(ritual)
    read.steps = [RitualStepRead.model_validate(s) for s in sorted(steps, key=lambda s: s.order)]
    # a streak whose last period has lapsed reads as broken even before the next write
    policy = policy_for(ritual.frequency, ritual.custom_frequency)
    if not is_streak_alive(policy, ritual.last_completed_at, now):
        read.streak_count = 0
    return read


async def load_steps(session: AsyncSession, ritual_id: str) -> List[RitualStep]:
    result = await session.scalars(
        select(RitualStep).where(RitualStep.ritual_id == ritual_id).order_by(RitualStep.order)
    )
    return list(result.all())


class RitualService:
    def __init__(
        self,
        db: Database,
        *,
        clock: Callable[[], datetime] = utcnow,
        max_page_size: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ):
        self.db = db
        self.clock = clock
        self.max_page_size = max_page_size or settings.max_page_size
        self.max_attempts = max_attempts or settings.max_commit_retries

    # ==========================================
    # RITUALS
    # ==========================================

    async def create(self, owner_id: str, raw: Any) -> RitualRead:
        if not owner_id:
            raise Unauthorized("Authentication required", authenticated=False)
        draft = validate_ritual_draft(raw)
        now = self.clock()
        ritual, steps = build_ritual(owner_id, draft, now)
        async with self.db.session() as session:
            session.add(ritual)
            session.add_all(steps)
        logger.info(
            "ritual_created",
            extra={"ritual_id": ritual.id, "user_id": owner_id, "steps": len(steps)},
        )
        return to_ritual_read(ritual, steps, now)

    async def get(self, ritual_id: str, requester_id: str) -> RitualRead:
        async with self.db.session() as session:
            ritual = await authorize_ritual(session, ritual_id, requester_id)
            steps = await load_steps(session, ritual_id)
        return to_ritual_read(ritual, steps, self.clock())

    async def list(
        self,
        owner_id: str,
        page: int = 1,
        limit: Optional[int] = None,
        *,
        category: Optional[str] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> Page[RitualRead]:
        if not owner_id:
            raise Unauthorized("Authentication required", authenticated=False)
        limit = settings.default_page_size if limit is None else limit
        validate_page(page, limit, self.max_page_size)

        filters = [Ritual.user_id == owner_id]
        if category is not None:
            try:
                filters.append(Ritual.category == RitualCategory(category))
            except ValueError:
                raise ValidationError("category", f"unknown category {category!r}") from None
        if is_active is not None:
            filters.append(Ritual.is_active == is_active)
        if search:
            filters.append(Ritual.name.icontains(search.strip(), autoescape=True))

        async with self.db.session() as session:
            total = await session.scalar(select(func.count()).select_from(Ritual).where(*filters))
            rituals = (
                await session.scalars(
                    select(Ritual)
                    .where(*filters)
                    .order_by(Ritual.created_at.desc(), Ritual.id.desc())
                    .offset((page - 1) * limit)
                    .limit(limit)
                )
            ).all()
            steps_by_ritual: Dict[str, List[RitualStep]] = defaultdict(list)
            if rituals:
                steps = await session.scalars(
                    select(RitualStep)
                    .where(RitualStep.ritual_id.in_([r.id for r in rituals]))
                    .order_by(RitualStep.order)
                )
                for step in steps:
                    steps_by_ritual[step.ritual_id].append(step)

        now = self.clock()
        total = total or 0
        return Page[RitualRead](
            items=[to_ritual_read(r, steps_by_ritual[r.id], now) for r in rituals],
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit),
        )

    async def update(self, ritual_id: str, requester_id: str, raw: Any) -> RitualRead:
        async def attempt() -> RitualRead:
            async with self.db.session() as session:
                ritual = await authorize_ritual(session, ritual_id, requester_id)
                changes = validate_ritual_patch(raw)

                frequency = changes.get("frequency", ritual.frequency)
                if "custom_frequency" in changes:
                    custom = changes["custom_frequency"]
                elif "frequency" in changes:
                    custom = None
                else:
                    custom = ritual.custom_frequency
                changes["custom_frequency"] = check_frequency_policy(frequency, custom)
                policy_changed = (frequency, changes["custom_frequency"]) != (
                    ritual.frequency,
                    ritual.custom_frequency,
                )

                now = self.clock()
                for field, value in changes.items():
                    setattr(ritual, field, value)
                await session.flush()
                if policy_changed:
                    await refresh_derived_state(session, ritual, now)
                else:
                    await bump_version(session, ritual, now)
                steps = await load_steps(session, ritual_id)

            logger.info(
                "ritual_updated",
                extra={"ritual_id": ritual_id, "fields": sorted(changes), "policy_changed": policy_changed},
            )
            return to_ritual_read(ritual, steps, now)

        async with self.db.ritual_lock(ritual_id):
            return await retry_on_conflict(ritual_id, attempt, self.max_attempts)

    async def delete(self, ritual_id: str, requester_id: str, *, purge: bool = False) -> DeleteAck:
        """
        Logical delete by default: the ritual and its completion log stay
        readable for analytics. ``purge`` removes ritual, steps and log.
        """
        async def attempt() -> None:
            async with self.db.session() as session:
                ritual = await authorize_ritual(session, ritual_id, requester_id)
                if purge:
                    await session.execute(
                        delete(RitualCompletion).where(RitualCompletion.ritual_id == ritual_id)
                    )
                    await session.execute(delete(RitualStep).where(RitualStep.ritual_id == ritual_id))
                    await session.delete(ritual)
                else:
                    ritual.is_active = False
                    await session.flush()
                    await bump_version(session, ritual, self.clock())

        async with self.db.ritual_lock(ritual_id):
            await retry_on_conflict(ritual_id, attempt, self.max_attempts)
        logger.info("ritual_deleted", extra={"ritual_id": ritual_id, "purged": purge})
        return DeleteAck(id=ritual_id, purged=purge)

    # ==========================================
    # STEPS
    # ==========================================

    async def add_step(self, ritual_id: str, requester_id: str, raw: Any) -> RitualStepRead:
        async def attempt() -> RitualStep:
            async with self.db.session() as session:
                ritual = await authorize_ritual(session, ritual_id, requester_id)
                draft = validate_step_draft(raw)
                steps = await load_steps(session, ritual_id)
                if len(steps) >= MAX_STEPS:
                    raise ValidationError("steps", f"a ritual can have at most {MAX_STEPS} steps")

                now = self.clock()
                step = RitualStep(ritual_id=ritual_id, created_at=now, **draft.model_dump())
                place_step(steps, step)
                session.add(step)
                # step edits move the row version so a concurrent recorder re-checks step ids
                await bump_version(session, ritual, now)
            return step

        async with self.db.ritual_lock(ritual_id):
            step = await retry_on_conflict(ritual_id, attempt, self.max_attempts)
        logger.info("ritual_step_added", extra={"ritual_id": ritual_id, "step_id": step.id})
        return RitualStepRead.model_validate(step)

    async def update_step(
        self, ritual_id: str, step_id: str, requester_id: str, raw: Any
    ) -> RitualStepRead:
        async def attempt() -> RitualStep:
            async with self.db.session() as session:
                ritual = await authorize_ritual(session, ritual_id, requester_id)
                changes = validate_step_patch(raw)
                steps = await load_steps(session, ritual_id)
                step = self._find_step(steps, step_id)

                new_order = changes.pop("order", None)
                for field, value in changes.items():
                    setattr(step, field, value)
                if new_order is not None and new_order != step.order:
                    step.order = new_order
                    place_step(steps, step)
                await bump_version(session, ritual, self.clock())
            return step

        async with self.db.ritual_lock(ritual_id):
            step = await retry_on_conflict(ritual_id, attempt, self.max_attempts)
        return RitualStepRead.model_validate(step)

    async def remove_step(self, ritual_id: str, step_id: str, requester_id: str) -> DeleteAck:
        async def attempt() -> None:
            async with self.db.session() as session:
                ritual = await authorize_ritual(session, ritual_id, requester_id)
                steps = await load_steps(session, ritual_id)
                await session.delete(self._find_step(steps, step_id))
                await bump_version(session, ritual, self.clock())

        async with self.db.ritual_lock(ritual_id):
            await retry_on_conflict(ritual_id, attempt, self.max_attempts)
        logger.info("ritual_step_removed", extra={"ritual_id": ritual_id, "step_id": step_id})
        return DeleteAck(id=step_id, purged=True)

    @staticmethod
    def _find_step(steps: Sequence[RitualStep], step_id: str) -> RitualStep:
        for step in steps:
            if step.id == step_id:
                return step
        raise NotFound("Step not found")
