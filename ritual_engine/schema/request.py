"""
Request schemas for the Ritual Engine API.

All drafts are closed: unknown keys fail validation. Free-text fields are
sanitized on the way in, so a validated draft never carries markup.
"""

import re
from datetime import time
from typing import Annotated, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StrictBool
from pydantic_core import PydanticCustomError

from ritual_engine.models import Frequency, RitualCategory, RitualType

NAME_MAX = 120
DESCRIPTION_MAX = 2000
NOTES_MAX = 2000
CRITERIA_MAX = 500
CUSTOM_FREQUENCY_MAX = 64
TAG_MAX = 50
MAX_TAGS = 20
MAX_STEPS = 50
DURATION_MAX = 24 * 60
SCALE_MIN, SCALE_MAX = 1, 10
DIFFICULTY_MIN, DIFFICULTY_MAX = 1, 5

_BLOCK_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"</?[a-zA-Z!][^>]*>")


def sanitize_text(value: str) -> str:
    """Remove script/style blocks, remaining tags and stray angle brackets."""
    value = _BLOCK_RE.sub("", value)
    value = _TAG_RE.sub("", value)
    value = value.replace("<", "").replace(">", "")
    return value.strip()


def _text(max_length: int, *, required: bool = False) -> AfterValidator:
    def check(value: str) -> Optional[str]:
        cleaned = sanitize_text(value)
        if not cleaned:
            if required:
                raise PydanticCustomError("missing", "field is required")
            return None
        if len(cleaned) > max_length:
            raise ValueError(f"must be at most {max_length} characters")
        return cleaned

    return AfterValidator(check)


def _clean_tags(tags: List[str]) -> List[str]:
    cleaned: List[str] = []
    for tag in tags:
        tag = sanitize_text(tag)
        if not tag or tag in cleaned:
            continue
        if len(tag) > TAG_MAX:
            raise ValueError(f"tags must be at most {TAG_MAX} characters")
        cleaned.append(tag)
    if len(cleaned) > MAX_TAGS:
        raise ValueError(f"at most {MAX_TAGS} tags are allowed")
    return cleaned


def _dedupe(values: List[str]) -> List[str]:
    return list(dict.fromkeys(values))


Name = Annotated[str, _text(NAME_MAX, required=True)]
Description = Annotated[str, _text(DESCRIPTION_MAX)]
Notes = Annotated[str, _text(NOTES_MAX)]
Criteria = Annotated[str, _text(CRITERIA_MAX)]
Tags = Annotated[List[str], AfterValidator(_clean_tags)]
StepIds = Annotated[List[str], AfterValidator(_dedupe)]
Scale = Annotated[int, Field(strict=True, ge=SCALE_MIN, le=SCALE_MAX)]
Difficulty = Annotated[int, Field(strict=True, ge=DIFFICULTY_MIN, le=DIFFICULTY_MAX)]
Duration = Annotated[int, Field(strict=True, ge=1, le=DURATION_MAX)]


class ClosedModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


# ==========================================
# STEPS
# ==========================================

class StepDraft(ClosedModel):
    name: Name
    order: int = Field(strict=True, ge=0)
    description: Optional[Description] = None
    duration_minutes: Optional[Duration] = None
    is_required: StrictBool = True
    completion_criteria: Optional[Criteria] = None


class StepPatch(ClosedModel):
    name: Optional[Name] = None
    order: Optional[int] = Field(None, strict=True, ge=0)
    description: Optional[Description] = None
    duration_minutes: Optional[Duration] = None
    is_required: Optional[StrictBool] = None
    completion_criteria: Optional[Criteria] = None


# ==========================================
# RITUALS
# ==========================================

class RitualDraft(ClosedModel):
    name: Name
    category: RitualCategory
    type: RitualType
    frequency: Frequency
    custom_frequency: Optional[str] = Field(None, max_length=CUSTOM_FREQUENCY_MAX)
    description: Optional[Description] = None
    duration_minutes: Optional[Duration] = None
    difficulty_level: Difficulty = 1
    tags: Tags = Field(default_factory=list)
    reminder_time: Optional[time] = None
    reminder_enabled: StrictBool = False
    steps: List[StepDraft] = Field(default_factory=list, max_length=MAX_STEPS)


class RitualPatch(ClosedModel):
    name: Optional[Name] = None
    category: Optional[RitualCategory] = None
    type: Optional[RitualType] = None
    frequency: Optional[Frequency] = None
    custom_frequency: Optional[str] = Field(None, max_length=CUSTOM_FREQUENCY_MAX)
    description: Optional[Description] = None
    duration_minutes: Optional[Duration] = None
    difficulty_level: Optional[Difficulty] = None
    tags: Optional[Tags] = None
    reminder_time: Optional[time] = None
    reminder_enabled: Optional[StrictBool] = None
    is_active: Optional[StrictBool] = None


# ==========================================
# COMPLETIONS
# ==========================================

class CompletionDraft(ClosedModel):
    duration_minutes: Optional[int] = Field(None, strict=True, ge=0, le=DURATION_MAX)
    mood_before: Optional[Scale] = None
    mood_after: Optional[Scale] = None
    energy_before: Optional[Scale] = None
    energy_after: Optional[Scale] = None
    notes: Optional[Notes] = None
    completed_steps: StepIds = Field(default_factory=list)
    skipped_steps: StepIds = Field(default_factory=list)


# ==========================================
# TEMPLATES
# ==========================================

class TemplateDraft(ClosedModel):
    name: Name
    category: RitualCategory
    description: Optional[Description] = None
    difficulty_level: Difficulty = 1
    estimated_duration: Optional[Duration] = None
    steps: List[StepDraft] = Field(default_factory=list, max_length=MAX_STEPS)
    tags: Tags = Field(default_factory=list)
    is_public: StrictBool = False
