"""Date/time extraction for free-text plan details.

Only phrasing with a clear calendar anchor is accepted: relative words
(today, tonight, tomorrow, a weekday, the weekend) or an explicit calendar
date.  A bare time such as "7pm" is not enough to place an event.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Tuple

from dateutil import parser as date_parser
from dateutil.relativedelta import FR, MO, SA, SU, TH, TU, WE, relativedelta

_WEEKDAYS = {
    "mon": MO, "monday": MO,
    "tue": TU, "tues": TU, "tuesday": TU,
    "wed": WE, "wednesday": WE,
    "thu": TH, "thur": TH, "thurs": TH, "thursday": TH,
    "fri": FR, "friday": FR,
    "sat": SA, "saturday": SA,
    "sun": SU, "sunday": SU,
}

_MONTHS = (
    "january|jan|february|feb|march|mar|april|apr|may|june|jun|july|jul|august|aug|"
    "september|sept|sep|october|oct|november|nov|december|dec"
)

_AM_PM = re.compile(r"\b(\d{1,2})(?::(\d{2}))?\s*(am|pm)\b", re.IGNORECASE)
_TWENTY_FOUR_HOUR = re.compile(r"\b([01]?\d|2[0-3]):([0-5]\d)\b")
_QUALIFIED_WEEKDAY = re.compile(
    r"\b(?:(this|next|coming|following)\s+)?(" + "|".join(sorted(_WEEKDAYS, key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)
_QUALIFIED_WEEKEND = re.compile(r"\b(?:(this|next|coming|following)\s+)?weekend\b", re.IGNORECASE)
_MONTH_DAY = re.compile(
    r"\b(" + _MONTHS + r")\.?\s+(\d{1,2})(?:st|nd|rd|th)?(?:,?\s*(\d{4}))?\b",
    re.IGNORECASE,
)
_DAY_MONTH = re.compile(
    r"\b(\d{1,2})(?:st|nd|rd|th)?\s+(?:of\s+)?(" + _MONTHS + r")\b(?:,?\s*(\d{4}))?",
    re.IGNORECASE,
)
_ISO_DATE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_SLASH_DATE = re.compile(r"\b(\d{1,2})/(\d{1,2})(?:/(\d{2,4}))?\b")

DATE_SIGNAL = re.compile(
    r"\b(today|tomorrow|tonight|weekend|" + "|".join(_WEEKDAYS) + "|" + _MONTHS + r"|\d{1,2}:\d{2}|\d{1,2}\s*(?:am|pm))\b",
    re.IGNORECASE,
)


def _start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _with_time(value: datetime, time_of_day: Tuple[int, int] | None) -> datetime:
    if time_of_day is None:
        return value
    return value.replace(hour=time_of_day[0], minute=time_of_day[1])


def parse_time_of_day(text: str) -> Tuple[int, int] | None:
    match = _AM_PM.search(text)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        if hour < 1 or hour > 12 or minute > 59:
            return None
        if match.group(3).lower() == "pm" and hour != 12:
            hour += 12
        elif match.group(3).lower() == "am" and hour == 12:
            hour = 0
        return hour, minute
    match = _TWENTY_FOUR_HOUR.search(text)
    if match:
        return int(match.group(1)), int(match.group(2))
    return None


def _relative_date(text: str, now: datetime, time_of_day: Tuple[int, int] | None) -> datetime | None:
    lowered = text.lower()
    today = _start_of_day(now)
    if re.search(r"\btomorrow\b", lowered):
        return _with_time(today + timedelta(days=1), time_of_day)
    if re.search(r"\b(today|tonight)\b", lowered):
        if time_of_day is None and "tonight" in lowered:
            time_of_day = (19, 0)
        candidate = _with_time(today, time_of_day)
        return candidate if candidate > now else candidate + timedelta(days=1)

    weekday_match = _QUALIFIED_WEEKDAY.search(lowered)
    weekend_match = _QUALIFIED_WEEKEND.search(lowered)
    if not weekday_match and not weekend_match:
        return None

    if weekday_match:
        qualifier = weekday_match.group(1)
        target = _WEEKDAYS[weekday_match.group(2)]
    else:
        qualifier = weekend_match.group(1)
        target = SU if now.weekday() == 6 and qualifier not in ("next", "following") else SA
    week_offset = 1 if qualifier in ("next", "following") else 0

    candidate = _with_time(today + relativedelta(weekday=target(+1), weeks=week_offset), time_of_day)
    if candidate <= now:
        candidate += timedelta(days=7)
    return candidate


def _calendar_date(text: str, now: datetime, time_of_day: Tuple[int, int] | None) -> datetime | None:
    fragment = None
    explicit_year = False
    for pattern in (_ISO_DATE, _MONTH_DAY, _DAY_MONTH, _SLASH_DATE):
        match = pattern.search(text)
        if match:
            fragment = match.group(0)
            explicit_year = pattern is _ISO_DATE or bool(match.group(3))
            break
    if fragment is None:
        return None

    try:
        parsed = date_parser.parse(fragment, default=_start_of_day(now))
    except (ValueError, OverflowError):
        return None

    candidate = _with_time(_start_of_day(parsed), time_of_day)
    if not explicit_year and candidate <= now:
        candidate += relativedelta(years=1)
    return candidate


def parse_plan_datetime(text: str, now: datetime | None = None) -> datetime | None:
    """Return the event start described by ``text`` or ``None``."""

    trimmed = text.strip()
    if not trimmed:
        return None
    reference = now or datetime.now()
    time_of_day = parse_time_of_day(trimmed)
    return _relative_date(trimmed, reference, time_of_day) or _calendar_date(trimmed, reference, time_of_day)
