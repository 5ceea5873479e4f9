from datetime import datetime, time, timezone
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Time
from sqlmodel import Field, SQLModel


# Column type for every stored timestamp: naive, always UTC.
NaiveUTC = DateTime(timezone=False)


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored datetime uses this convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid4())


class RitualCategory(str, Enum):
    morning = "morning"
    evening = "evening"
    work = "work"
    health = "health"
    mindfulness = "mindfulness"
    custom = "custom"


class RitualType(str, Enum):
    habit = "habit"
    routine = "routine"
    sequence = "sequence"


class Frequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    custom = "custom"


class Ritual(SQLModel, table=True):
    __tablename__ = "rituals"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    name: str
    description: Optional[str] = None
    category: RitualCategory = Field(index=True)
    type: RitualType
    frequency: Frequency
    custom_frequency: Optional[str] = None
    duration_minutes: Optional[int] = None
    difficulty_level: int = 1
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    reminder_time: Optional[time] = Field(default=None, sa_type=Time())
    reminder_enabled: bool = False
    is_active: bool = Field(default=True, index=True)

    # derived from the completion log; written only by the completion recorder
    streak_count: int = 0
    best_streak: int = 0
    total_completions: int = 0
    last_completed_at: Optional[datetime] = Field(default=None, sa_type=NaiveUTC)

    version: int = 1
    created_at: datetime = Field(default_factory=utcnow, index=True, sa_type=NaiveUTC)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=NaiveUTC)


class RitualStep(SQLModel, table=True):
    __tablename__ = "ritual_steps"

    id: str = Field(default_factory=new_id, primary_key=True)
    ritual_id: str = Field(foreign_key="rituals.id", index=True)
    order: int
    name: str
    description: Optional[str] = None
    duration_minutes: Optional[int] = None
    is_required: bool = True
    completion_criteria: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=NaiveUTC)


class RitualCompletion(SQLModel, table=True):
    """Append-only: rows are never updated after insert."""

    __tablename__ = "ritual_completions"

    id: str = Field(default_factory=new_id, primary_key=True)
    ritual_id: str = Field(foreign_key="rituals.id", index=True)
    user_id: str = Field(index=True)
    completed_at: datetime = Field(default_factory=utcnow, index=True, sa_type=NaiveUTC)
    duration_minutes: Optional[int] = None
    mood_before: Optional[int] = None
    mood_after: Optional[int] = None
    energy_before: Optional[int] = None
    energy_after: Optional[int] = None
    notes: Optional[str] = None
    completed_steps: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    skipped_steps: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))


class RitualTemplate(SQLModel, table=True):
    __tablename__ = "ritual_templates"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str
    description: Optional[str] = None
    category: RitualCategory = Field(index=True)
    difficulty_level: int = 1
    estimated_duration: Optional[int] = None
    steps: List[dict] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    popularity_score: int = 0
    created_by: str = Field(index=True)
    is_public: bool = False
    created_at: datetime = Field(default_factory=utcnow, sa_type=NaiveUTC)
