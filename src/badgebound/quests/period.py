"""Reset periods and evaluation windows for recurring quests.

Two deliberately separate notions of "week" live here:

- The WEEKLY period key numbers weeks as ceil(day_of_year / 7), so week 1 is
  always Jan 1-7 regardless of weekday. This is not ISO-8601 and must stay as
  is: changing it would move the reset boundary of existing weekly quests.
- The WEEKLY evaluation window runs from the most recent UTC Monday 00:00
  for seven days.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

from badgebound.db.models import Quest, QuestType
from badgebound.mirror.records import TimeWindow
from badgebound.mirror.units import ensure_utc


def get_monday(dt: datetime | date) -> date:
    """Get the Monday of the week containing dt."""
    d = dt.date() if isinstance(dt, datetime) else dt
    return d - timedelta(days=d.weekday())


def start_of_day(dt: datetime) -> datetime:
    return datetime.combine(ensure_utc(dt).date(), time.min, tzinfo=timezone.utc)


def day_of_year_week(dt: datetime) -> int:
    """Week number as ceil(day_of_year / 7), 1-based."""
    return (dt.timetuple().tm_yday + 6) // 7


def _type_value(quest_type: QuestType | str) -> str:
    return quest_type.value if isinstance(quest_type, QuestType) else str(quest_type)


def period_key(quest_type: QuestType | str, now: datetime | None = None) -> str | None:
    """Canonical reset-period key, or None for quests claimable at most once ever.

    DAILY  -> 'daily:YYYY-MM-DD' (UTC calendar day)
    WEEKLY -> 'weekly:YYYY-Wnn'  (day-of-year week, see module docstring)
    """
    now = ensure_utc(now or datetime.now(timezone.utc))
    kind = _type_value(quest_type)

    if kind == QuestType.DAILY.value:
        return f"daily:{now:%Y-%m-%d}"
    if kind == QuestType.WEEKLY.value:
        return f"weekly:{now.year}-W{day_of_year_week(now):02d}"
    return None


def quest_period_key(quest: Quest, now: datetime | None = None) -> str | None:
    return period_key(quest.type, now)


def period_bounds(quest_type: QuestType | str, now: datetime) -> TimeWindow:
    """Unclipped [start, end) of the current period for the quest type."""
    kind = _type_value(quest_type)
    now = ensure_utc(now)

    if kind == QuestType.DAILY.value:
        start = start_of_day(now)
        return TimeWindow(start, start + timedelta(days=1))
    if kind == QuestType.WEEKLY.value:
        start = datetime.combine(get_monday(now), time.min, tzinfo=timezone.utc)
        return TimeWindow(start, start + timedelta(days=7))
    return TimeWindow()


def evaluation_window(quest: Quest, now: datetime | None = None) -> TimeWindow:
    """Activity window for one evaluation cycle, clipped by the quest's own validity."""
    now = ensure_utc(now or datetime.now(timezone.utc))
    bounds = period_bounds(quest.type, now)

    start = bounds.start
    end = bounds.end
    if quest.start_at is not None:
        quest_start = ensure_utc(quest.start_at)
        start = quest_start if start is None else max(start, quest_start)
    if quest.end_at is not None:
        quest_end = ensure_utc(quest.end_at)
        end = quest_end if end is None else min(end, quest_end)

    return TimeWindow(start, end)
