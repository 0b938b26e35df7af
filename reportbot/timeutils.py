# -*- coding: utf-8 -*-
"""Wall-clock helpers that decide week folders and day/night variants."""

# --- IMPORTS ---
from datetime import date, datetime, timedelta, timezone

# Local Imports
from .constants import MOSCOW_UTC_OFFSET_HOURS, NIGHT_START_HOUR, NIGHT_END_HOUR


def format_date(value: date) -> str:
    """Formats a date as DD.MM.YY."""
    return value.strftime("%d.%m.%y")


def week_start(now: datetime | None = None) -> date:
    """Returns the Monday of the week containing `now` (local time)."""
    now = now or datetime.now()
    today = now.date()
    return today - timedelta(days=today.weekday())


def current_week_label(now: datetime | None = None) -> str:
    """Week folder name, e.g. '30.12.24 – 05.01.25' (Monday to Sunday, en-dash)."""
    start = week_start(now)
    end = start + timedelta(days=6)
    return f"{format_date(start)} – {format_date(end)}"


def week_bucket_key(now: datetime | None = None) -> str:
    """Key of the in-memory fallback counters: ISO year and ISO week of the label week."""
    iso_year, iso_week, _ = week_start(now).isocalendar()
    return f"{iso_year}-{iso_week}"


def is_night_window(now: datetime | None = None) -> bool:
    """True between 00:00 and 09:00 Moscow time (fixed UTC+3, no DST)."""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    moscow_hour = (now.astimezone(timezone.utc).hour + MOSCOW_UTC_OFFSET_HOURS) % 24
    return NIGHT_START_HOUR <= moscow_hour < NIGHT_END_HOUR
