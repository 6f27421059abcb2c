# app/services/vapi/datetime_normalizer.py
"""
Repairs datetimes spoken to the voice assistant.

The assistant sends timestamps such as ``2025-12-05T14:00:00`` (or the same with
a bogus ``Z``) that really mean wall-clock time at the business, and it often
gets the year wrong. Everything here is pure so it can be tested against a
fixed reference instant.
"""
import logging
import re
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.core.exceptions import InvalidRequestError

logger = logging.getLogger(__name__)

BARE_DATETIME = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(Z)?$")


def load_zone(name: str, fallback_offset_hours: int = 10) -> tzinfo:
    """IANA zone, or a fixed offset when the tz database is unavailable"""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(
            f"Time zone {name!r} not available, using fixed UTC{fallback_offset_hours:+d}"
        )
        return timezone(timedelta(hours=fallback_offset_hours))


def _replace_year(local: datetime, year: int) -> datetime:
    try:
        return local.replace(year=year)
    except ValueError:
        # Feb 29 into a non-leap year
        return local.replace(year=year, month=3, day=1)


def normalize_voice_datetime(
        raw: str,
        assumed_zone: tzinfo,
        reference_now: datetime,
        treat_as_local: bool = False,
) -> datetime:
    """
    Interpret ``raw`` and return an aware UTC datetime.

    With ``treat_as_local`` a bare timestamp (optionally ending in ``Z``) is read
    as wall-clock time in ``assumed_zone``, DST included. Otherwise a bare
    timestamp is UTC and anything carrying an offset is honoured.

    If the result lies before ``reference_now`` and its year is behind the
    reference year, the year is moved to the reference year, or the next one
    when that is still in the past. Same-year past times are left alone.
    """
    if not raw or not isinstance(raw, str):
        raise InvalidRequestError("Invalid date/time: value is missing")

    text = raw.strip()
    is_bare = BARE_DATETIME.match(text) is not None

    try:
        if treat_as_local and is_bare:
            interpret_zone = assumed_zone
            parsed = datetime.fromisoformat(text.rstrip("Z")).replace(tzinfo=assumed_zone)
        else:
            interpret_zone = timezone.utc
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            parsed = datetime.fromisoformat(text)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
    except ValueError:
        raise InvalidRequestError(f"Invalid date/time: {raw}") from None

    reference_now = reference_now.astimezone(timezone.utc)
    result = parsed.astimezone(timezone.utc)

    if result < reference_now:
        # Roll on the wall clock so 14:00 stays 14:00 across a DST change
        local = parsed.astimezone(interpret_zone)
        reference_year = reference_now.astimezone(interpret_zone).year
        if local.year < reference_year:
            rolled = _replace_year(local, reference_year)
            if rolled.astimezone(timezone.utc) < reference_now:
                rolled = _replace_year(local, reference_year + 1)
            logger.info(f"Corrected stale year in {raw!r} to {rolled.year}")
            result = rolled.astimezone(timezone.utc)

    return result
