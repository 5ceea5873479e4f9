"""
Validation & sanitization for everything that enters the ritual engine.

Turns raw client payloads into the closed drafts from ``schema.request`` and
translates pydantic failures into ``ValidationError`` naming the offending
field. Server-managed keys (ids, timestamps, derived streak counters) are
dropped before validation so a client can never set them.
"""

import logging
import re
from collections.abc import Mapping
from typing import Any, Iterable, Optional, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ritual_engine.errors import InvalidStepReference, MissingField, ValidationError
from ritual_engine.models import Frequency
from ritual_engine.schema.request import (
    CompletionDraft,
    RitualDraft,
    RitualPatch,
    StepDraft,
    StepPatch,
    TemplateDraft,
    sanitize_text,
)
from ritual_engine.services.streaks import parse_custom_frequency

logger = logging.getLogger("ritual_engine")

WINDOW_MAX_DAYS = 365

RITUAL_READ_ONLY = frozenset({
    "id", "user_id", "streak_count", "best_streak", "total_completions",
    "last_completed_at", "version", "created_at", "updated_at",
})
STEP_READ_ONLY = frozenset({"id", "ritual_id", "created_at"})
COMPLETION_READ_ONLY = frozenset({"id", "ritual_id", "user_id", "completed_at"})
TEMPLATE_READ_ONLY = frozenset({"id", "created_by", "popularity_score", "created_at"})

# columns that exist on the ritual but cannot be cleared
RITUAL_NON_NULLABLE = ("name", "category", "type", "frequency", "difficulty_level",
                       "tags", "reminder_enabled", "is_active")
STEP_NON_NULLABLE = ("name", "order", "is_required")

_WINDOW_RE = re.compile(r"^(\d{1,3})d$")

M = TypeVar("M", bound=BaseModel)


def _translate(exc: PydanticValidationError) -> ValidationError:
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error["loc"]) or "body"
    if error["type"] == "missing":
        return MissingField(field)
    if error["type"] == "extra_forbidden":
        return ValidationError(field, "unknown field")
    return ValidationError(field, error["msg"])


def parse_draft(model: Type[M], raw: Any, *, ignore: Iterable[str] = ()) -> M:
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ValidationError("body", "expected a JSON object")
    ignore = frozenset(ignore)
    dropped = sorted(k for k in raw if k in ignore)
    if dropped:
        logger.debug("read_only_fields_ignored", extra={"fields": dropped})
    data = {k: v for k, v in raw.items() if k not in ignore}
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise _translate(exc) from None


def _reject_nulls(changes: dict, fields: Iterable[str]) -> None:
    for field in fields:
        if field in changes and changes[field] is None:
            raise ValidationError(field, "may not be null")


def check_frequency_policy(frequency: Frequency, custom_frequency: Optional[str]) -> Optional[str]:
    """Returns the normalized custom expression (None unless frequency is custom)."""
    if frequency != Frequency.custom:
        if custom_frequency:
            raise ValidationError("custom_frequency", "only allowed when frequency is 'custom'")
        return None
    if not custom_frequency:
        raise MissingField("custom_frequency")
    expression = " ".join(sanitize_text(custom_frequency).lower().split())
    try:
        parse_custom_frequency(expression)
    except ValueError as e:
        raise ValidationError("custom_frequency", str(e)) from None
    return expression


def validate_ritual_draft(raw: Any) -> RitualDraft:
    draft = parse_draft(RitualDraft, raw, ignore=RITUAL_READ_ONLY | {"is_active"})
    draft.custom_frequency = check_frequency_policy(draft.frequency, draft.custom_frequency)
    return draft


def validate_ritual_patch(raw: Any) -> dict:
    patch = parse_draft(RitualPatch, raw, ignore=RITUAL_READ_ONLY)
    changes = patch.model_dump(exclude_unset=True)
    _reject_nulls(changes, RITUAL_NON_NULLABLE)
    return changes


def validate_step_draft(raw: Any) -> StepDraft:
    return parse_draft(StepDraft, raw, ignore=STEP_READ_ONLY)


def validate_step_patch(raw: Any) -> dict:
    patch = parse_draft(StepPatch, raw, ignore=STEP_READ_ONLY)
    changes = patch.model_dump(exclude_unset=True)
    _reject_nulls(changes, STEP_NON_NULLABLE)
    return changes


def validate_completion_draft(raw: Any) -> CompletionDraft:
    draft = parse_draft(CompletionDraft, raw, ignore=COMPLETION_READ_ONLY)
    overlap = set(draft.completed_steps) & set(draft.skipped_steps)
    if overlap:
        raise ValidationError(
            "skipped_steps", f"step {sorted(overlap)[0]} is also listed as completed"
        )
    return draft


def check_step_references(draft: CompletionDraft, step_ids: Iterable[str]) -> None:
    known = set(step_ids)
    for field in ("completed_steps", "skipped_steps"):
        for step_id in getattr(draft, field):
            if step_id not in known:
                raise InvalidStepReference(field, step_id)


def validate_template_draft(raw: Any) -> TemplateDraft:
    return parse_draft(TemplateDraft, raw, ignore=TEMPLATE_READ_ONLY)


def validate_page(page: int, limit: int, max_limit: int) -> None:
    if page < 1:
        raise ValidationError("page", "must be at least 1")
    if not 1 <= limit <= max_limit:
        raise ValidationError("limit", f"must be between 1 and {max_limit}")


def parse_window(time_range: str) -> int:
    """``"30d"`` -> 30. Only day-granular lookbacks are accepted."""
    match = _WINDOW_RE.match(time_range or "")
    if not match:
        raise ValidationError("time_range", "expected '<days>d', e.g. '30d'")
    days = int(match.group(1))
    if not 1 <= days <= WINDOW_MAX_DAYS:
        raise ValidationError("time_range", f"must cover between 1 and {WINDOW_MAX_DAYS} days")
    return days
