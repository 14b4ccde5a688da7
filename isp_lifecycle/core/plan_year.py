"""
Plan-year arithmetic.

A plan year is the half-open interval between two consecutive anniversaries
of a client's anchor date, starting at local midnight in the configured
timezone. All arithmetic is done on calendar dates so leap years and DST
transitions never shift a boundary.

Leap-day rule: a Feb 29 anchor falls on Feb 28 in non-leap years.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timezone, tzinfo
from typing import List, Optional, Union
from zoneinfo import ZoneInfo

TzLike = Union[str, tzinfo, None]


@dataclass(frozen=True)
class PlanYear:
    """A ``[start, end)`` plan-year window."""

    start: datetime
    end: datetime

    def __contains__(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }


def resolve_tz(tz: TzLike) -> tzinfo:
    """Turn an IANA name (or None for UTC) into a tzinfo."""
    if tz is None:
        return timezone.utc
    if isinstance(tz, str):
        return timezone.utc if tz.upper() == "UTC" else ZoneInfo(tz)
    return tz


def anniversary_in(anchor: date, year: int) -> date:
    """Project the anchor's month/day onto ``year``."""
    if anchor.month == 2 and anchor.day == 29 and not calendar.isleap(year):
        return date(year, 2, 28)
    return date(year, anchor.month, anchor.day)


def is_anniversary(anchor: date, day: date) -> bool:
    """True if ``day`` is the anchor's anniversary in ``day``'s year."""
    return anniversary_in(anchor, day.year) == day


def anchor_days_for(day: date) -> List[int]:
    """Anchor days-of-month whose anniversary lands on ``day``.

    On Feb 28 of a non-leap year that includes 29, so Feb 29 anchors are
    picked up by the daily selection.
    """
    days = [day.day]
    if day.month == 2 and day.day == 28 and not calendar.isleap(day.year):
        days.append(29)
    return days


def _midnight(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def local_today(now: Optional[datetime] = None, tz: TzLike = None) -> date:
    """The calendar date of ``now`` in ``tz``."""
    zone = resolve_tz(tz)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(zone).date()


def plan_year_for(anchor: date, now: Optional[datetime] = None, tz: TzLike = None) -> PlanYear:
    """Return the plan year containing ``now``.

    Args:
        anchor: Anchor date; only month and day are used
        now: Reference instant (defaults to current UTC time; naive = UTC)
        tz: Timezone the boundaries are expressed in

    Returns:
        PlanYear with ``start <= now < end``
    """
    zone = resolve_tz(tz)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    year = now.astimezone(zone).year

    this_year = _midnight(anniversary_in(anchor, year), zone)
    if this_year > now:
        start = _midnight(anniversary_in(anchor, year - 1), zone)
        end = this_year
    else:
        start = this_year
        end = _midnight(anniversary_in(anchor, year + 1), zone)

    return PlanYear(start=start, end=end)


def plan_year_ending_on(anchor: date, day: date, tz: TzLike = None) -> PlanYear:
    """Return the plan year whose end boundary is the anniversary in ``day``'s year.

    On an anniversary this is the cycle that has just closed, which is the
    one the renewal sweep archives.
    """
    zone = resolve_tz(tz)
    return PlanYear(
        start=_midnight(anniversary_in(anchor, day.year - 1), zone),
        end=_midnight(anniversary_in(anchor, day.year), zone),
    )

