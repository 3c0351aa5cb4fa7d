"""
Aggregation views -- leaderboard and activity calendar.

Pure transforms over bulk ledger reads. The leaderboard ranks by the
public submission count, never by the confidential total: the only
decrypted number that may appear is the current user's own, and only
while it still matches their current handle.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional, Sequence

from . import DAY_SECONDS
from .ledger.base import LedgerClient
from .models import CalendarDay, ClearValue, LeaderboardEntry, day_date

logger = logging.getLogger("solartrack.views")

LEADERBOARD_LIMIT = 100
CALENDAR_WINDOW_DAYS = 35
SCORE_PER_KWH = 10
CO2_KG_PER_KWH = 0.5


def day_key(timestamp: float) -> int:
    """Day index since the unix epoch. Same formula the contract uses."""
    return int(timestamp // DAY_SECONDS)


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------


def rank_leaderboard(
    counts: Iterable[tuple[str, int]],
    current_user: Optional[str] = None,
    limit: int = LEADERBOARD_LIMIT,
) -> list[LeaderboardEntry]:
    """Rank users by submission count.

    Count descending, then address ascending, so the order is total and
    deterministic. Ranks start at 1.

    Args:
        counts: (address, submission count) pairs.
        current_user: Address to flag as the requesting user.
        limit: Maximum number of rows.

    Returns:
        list[LeaderboardEntry]: At most ``limit`` ranked rows.
    """
    me = current_user.lower() if current_user else None
    ordered = sorted(counts, key=lambda pair: (-int(pair[1]), pair[0].lower()))
    return [
        LeaderboardEntry(
            address=address,
            log_count=int(count),
            rank=i + 1,
            is_current_user=me is not None and address.lower() == me,
        )
        for i, (address, count) in enumerate(ordered[:limit])
    ]


def attach_revealed_total(
    entries: list[LeaderboardEntry],
    clear_value: Optional[ClearValue],
    current_handle: Optional[str],
) -> list[LeaderboardEntry]:
    """Show the current user's decrypted total on their own row only.

    Nothing is attached unless ``clear_value`` still matches the user's
    current handle.
    """
    if clear_value is None or not clear_value.matches(current_handle):
        return entries
    return [
        e.model_copy(update={"revealed_total": int(clear_value.clear)}) if e.is_current_user else e
        for e in entries
    ]


async def load_leaderboard(
    ledger: LedgerClient,
    current_user: Optional[str] = None,
    limit: int = LEADERBOARD_LIMIT,
) -> list[LeaderboardEntry]:
    """Read every user's public submission count and rank them.

    Raises:
        LedgerCallError: If the user list or any count cannot be read.
    """
    users = await ledger.get_all_users()
    if not users:
        return []
    counts = await asyncio.gather(*(ledger.get_user_submission_count(u) for u in users))
    return rank_leaderboard(zip(users, counts), current_user=current_user, limit=limit)


# ---------------------------------------------------------------------------
# Activity calendar and streaks
# ---------------------------------------------------------------------------


def longest_streak(flags: Iterable[bool]) -> int:
    """Longest run of consecutive True values, scanning oldest to newest."""
    best = 0
    run = 0
    for has_record in flags:
        if has_record:
            run += 1
            best = max(best, run)
        else:
            run = 0
    return best


def calendar_streak(days: Sequence[CalendarDay]) -> int:
    """Longest streak in a calendar, whatever order the days arrive in."""
    ordered = sorted(days, key=lambda d: d.day_key)
    return longest_streak(d.has_record for d in ordered)


def current_streak(days: Sequence[CalendarDay]) -> int:
    """Consecutive days logged up to today.

    Today not being logged yet does not break the streak; the run then
    counts back from yesterday.
    """
    ordered = sorted(days, key=lambda d: d.day_key)
    if ordered and ordered[-1].is_today and not ordered[-1].has_record:
        ordered = ordered[:-1]
    run = 0
    for day in reversed(ordered):
        if not day.has_record:
            break
        run += 1
    return run


async def _day_has_record(ledger: LedgerClient, user: str, key: int) -> bool:
    try:
        record = await ledger.get_user_record(user, key)
    except Exception as exc:
        logger.debug("getUserRecord failed for day %d: %s", key, exc)
        return False
    return bool(record.exists)


async def load_calendar(
    ledger: LedgerClient,
    user: str,
    now: float,
    window: int = CALENDAR_WINDOW_DAYS,
) -> list[CalendarDay]:
    """Build the trailing activity window ending today, oldest first.

    A day whose record cannot be read shows as not logged; the calendar
    stays renderable under partial read failure.
    """
    today = day_key(now)
    keys = [today - offset for offset in range(window - 1, -1, -1)]
    flags = await asyncio.gather(*(_day_has_record(ledger, user, k) for k in keys))
    missing = sum(1 for f in flags if not f)
    logger.debug("Calendar for %s: %d/%d days logged", user, window - missing, window)
    return [
        CalendarDay(day_key=k, date=day_date(k), has_record=flag, is_today=k == today)
        for k, flag in zip(keys, flags)
    ]


# ---------------------------------------------------------------------------
# Derived figures
# ---------------------------------------------------------------------------


def environmental_score(total_kwh: int) -> int:
    return int(total_kwh) * SCORE_PER_KWH


def co2_saved_kg(total_kwh: int) -> float:
    return round(int(total_kwh) * CO2_KG_PER_KWH, 2)
