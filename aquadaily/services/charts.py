"""Chart data preparation for the dashboard."""

from __future__ import annotations

import math
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Iterable, List, Optional

from ..schemas import DEFAULT_GOAL_ML, DayBucket, WaterLog

WEEKDAY_ABBREVIATIONS = ('Sun', 'Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat')


def weekday_label(day: date) -> str:
    # date.weekday() is Monday=0; labels start on Sunday.
    return WEEKDAY_ABBREVIATIONS[(day.weekday() + 1) % 7]


def weekly_buckets(
    logs: Iterable[WaterLog],
    today: Optional[date] = None,
    tz: Optional[tzinfo] = None,
    goal_ml: int = DEFAULT_GOAL_ML,
) -> List[DayBucket]:
    """Sum logged water per local calendar day for the last seven days.

    Returns exactly seven buckets ordered oldest to newest, ending with
    ``today``. Days without logs sum to zero; logs outside the window are
    ignored.
    """

    if today is None:
        today = datetime.now(timezone.utc).astimezone(tz).date()

    days = [today - timedelta(days=offset) for offset in range(6, -1, -1)]
    totals = {day: 0 for day in days}
    for entry in logs:
        logged_on = entry.created_at.astimezone(tz).date()
        if logged_on in totals:
            totals[logged_on] += entry.amount_ml

    return [
        DayBucket(
            name=weekday_label(day),
            amount=totals[day],
            full_date=day,
            goal_met=totals[day] >= goal_ml,
        )
        for day in days
    ]


def total_amount(logs: Iterable[WaterLog]) -> int:
    return sum(entry.amount_ml for entry in logs)


def progress_percentage(total_ml: int, goal_ml: int) -> int:
    """Share of the daily goal reached, rounded half up and capped at 100."""

    if goal_ml <= 0:
        return 0
    return min(math.floor(total_ml / goal_ml * 100 + 0.5), 100)
