"""
Response schemas for the Ritual Engine API.
"""

from datetime import date, datetime, time
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from ritual_engine.models import Frequency, RitualCategory, RitualType, utcnow

T = TypeVar("T")


# ==========================================
# CORE SCHEMAS
# ==========================================

class RitualStepRead(BaseModel):
    id: str
    ritual_id: str
    order: int
    name: str
    description: Optional[str]
    duration_minutes: Optional[int]
    is_required: bool
    completion_criteria: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class RitualRead(BaseModel):
    id: str
    user_id: str
    name: str
    description: Optional[str]
    category: RitualCategory
    type: RitualType
    frequency: Frequency
    custom_frequency: Optional[str]
    duration_minutes: Optional[int]
    difficulty_level: int
    tags: List[str]
    reminder_time: Optional[time]
    reminder_enabled: bool
    is_active: bool
    streak_count: int
    best_streak: int
    total_completions: int
    last_completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    steps: List[RitualStepRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class RitualCompletionRead(BaseModel):
    id: str
    ritual_id: str
    user_id: str
    completed_at: datetime
    duration_minutes: Optional[int]
    mood_before: Optional[int]
    mood_after: Optional[int]
    energy_before: Optional[int]
    energy_after: Optional[int]
    notes: Optional[str]
    completed_steps: List[str]
    skipped_steps: List[str]

    model_config = ConfigDict(from_attributes=True)


class RitualTemplateRead(BaseModel):
    id: str
    name: str
    description: Optional[str]
    category: RitualCategory
    difficulty_level: int
    estimated_duration: Optional[int]
    steps: List[Dict[str, Any]]
    tags: List[str]
    popularity_score: int
    created_by: str
    is_public: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Page(BaseModel, Generic[T]):
    items: List[T]
    page: int
    limit: int
    total: int
    total_pages: int


class DeleteAck(BaseModel):
    id: str
    deleted: bool = True
    purged: bool = False


# ==========================================
# ANALYTICS SCHEMAS
# ==========================================

class CompletionAverages(BaseModel):
    """Means over completions that carry the field; None when none do."""
    duration: Optional[float] = None
    mood_before: Optional[float] = None
    mood_after: Optional[float] = None
    energy_before: Optional[float] = None
    energy_after: Optional[float] = None


class CompletionImprovements(BaseModel):
    mood: Optional[float] = None
    energy: Optional[float] = None


class AnalyticsSummary(BaseModel):
    ritual_id: Optional[str] = None
    window_days: int
    start_date: date
    end_date: date
    total_completions: int = 0
    averages: CompletionAverages = Field(default_factory=CompletionAverages)
    improvements: CompletionImprovements = Field(default_factory=CompletionImprovements)
    completions_by_day: Dict[date, int] = Field(default_factory=dict)
    consistency: float = 0.0


# ==========================================
# ENVELOPE
# ==========================================

class APIResponse(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
