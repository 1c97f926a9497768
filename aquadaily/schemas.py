"""Pydantic records persisted by the hydration store.

Every record is stored as plain JSON (``model_dump(mode="json")``) so the
backing storage never needs to know about these classes.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


DEFAULT_GOAL_ML: int = 2000
DEFAULT_REMINDER_MINUTES: int = 120
DEFAULT_CONSISTENCY_SCORE: int = 50

WEEK_DAYS: int = 7
MONTH_DAYS: int = 30


class TimeRange(str, Enum):
    """Trailing windows supported by log queries."""
    WEEK = "week"
    MONTH = "month"

    @property
    def days(self) -> int:
        return WEEK_DAYS if self is TimeRange.WEEK else MONTH_DAYS


def _ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class _Record(BaseModel):
    @field_validator("*", mode="after")
    @classmethod
    def _utc_timestamps(cls, v):
        # Naive timestamps from older payloads are treated as UTC.
        if isinstance(v, datetime):
            return _ensure_aware(v)
        return v


class User(_Record):
    id: str
    email: str
    name: str
    created_at: datetime


class DailyGoal(_Record):
    user_id: str
    goal_ml: int = Field(DEFAULT_GOAL_ML, gt=0)
    reminder_frequency: int = Field(DEFAULT_REMINDER_MINUTES, description="Minutes between reminders")
    updated_at: datetime


class WaterLog(_Record):
    id: str
    user_id: str
    amount_ml: int = Field(..., gt=0)
    created_at: datetime


class UserBehaviorStats(_Record):
    user_id: str
    streak_days: int = 0
    average_daily_intake: float = 0
    last_logged_at: datetime
    consistency_score: int = Field(DEFAULT_CONSISTENCY_SCORE, ge=0, le=100)


class AuthSession(BaseModel):
    """The single active identity held by the client."""
    user: User
    token: str


class SmartInsight(BaseModel):
    """Structured output from the Gemini insight call.

    Field names follow the JSON schema requested from the model.
    """
    patternAnalysis: str
    hydrationScore: int = Field(..., ge=0, le=100)
    goalSuggestion: Optional[str] = None
    recommendation: str


class DayBucket(BaseModel):
    """One bar of the weekly chart."""
    name: str
    amount: int = Field(0, ge=0)
    full_date: date
    goal_met: bool = False
