# app/services/vapi/formatting.py
"""Spoken-style date phrases for assistant replies, in the business's zone"""
from datetime import datetime, tzinfo


def _time(local: datetime) -> str:
    hour = local.hour % 12 or 12
    meridiem = "am" if local.hour < 12 else "pm"
    return f"{hour}:{local.minute:02d} {meridiem}"


def format_full(value: datetime, zone: tzinfo) -> str:
    """Friday 5 December 2025 at 2:00 pm"""
    local = value.astimezone(zone)
    return f"{local:%A} {local.day} {local:%B %Y} at {_time(local)}"


def format_short(value: datetime, zone: tzinfo) -> str:
    """5 December at 2:00 pm"""
    local = value.astimezone(zone)
    return f"{local.day} {local:%B} at {_time(local)}"


def format_basic(value: datetime, zone: tzinfo) -> str:
    """05/12/2025, 2:00:00 pm"""
    local = value.astimezone(zone)
    hour = local.hour % 12 or 12
    meridiem = "am" if local.hour < 12 else "pm"
    return f"{local:%d/%m/%Y}, {hour}:{local.minute:02d}:{local.second:02d} {meridiem}"


def format_date(value: datetime, zone: tzinfo) -> str:
    return f"{value.astimezone(zone):%d/%m/%Y}"
