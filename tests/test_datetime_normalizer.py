from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from app.core.exceptions import InvalidRequestError
from app.services.vapi.datetime_normalizer import load_zone, normalize_voice_datetime
from app.services.vapi.formatting import format_basic, format_date, format_full, format_short

SYDNEY = ZoneInfo("Australia/Sydney")
REFERENCE = datetime(2025, 11, 1, tzinfo=timezone.utc)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestNormalizeVoiceDatetime:

    @pytest.mark.parametrize("raw", ["2025-12-05T14:00:00", "2025-12-05T14:00:00Z"])
    def test_bare_local_time_uses_daylight_saving_offset(self, raw):
        # December is AEDT, UTC+11
        result = normalize_voice_datetime(raw, SYDNEY, REFERENCE, treat_as_local=True)
        assert result == utc(2025, 12, 5, 3, 0)

    def test_bare_local_time_in_winter_uses_standard_offset(self):
        result = normalize_voice_datetime("2026-06-10T14:00:00", SYDNEY, REFERENCE, treat_as_local=True)
        assert result == utc(2026, 6, 10, 4, 0)

    def test_explicit_offset_is_honoured_even_when_local(self):
        result = normalize_voice_datetime(
            "2025-12-05T14:00:00+08:00", SYDNEY, REFERENCE, treat_as_local=True
        )
        assert result == utc(2025, 12, 5, 6, 0)

    def test_bare_time_is_utc_when_not_local(self):
        result = normalize_voice_datetime("2025-12-05T14:00:00", SYDNEY, REFERENCE)
        assert result == utc(2025, 12, 5, 14, 0)

    def test_stale_year_moves_to_reference_year(self):
        result = normalize_voice_datetime("2024-12-05T14:00:00", SYDNEY, REFERENCE, treat_as_local=True)
        assert result == utc(2025, 12, 5, 3, 0)

    def test_stale_year_moves_to_next_year_when_still_past(self):
        result = normalize_voice_datetime("2024-03-01T10:00:00", SYDNEY, REFERENCE, treat_as_local=True)
        # 10:00 AEDT on 1 March 2026
        assert result == utc(2026, 2, 28, 23, 0)

    def test_past_time_in_current_year_is_left_alone(self):
        result = normalize_voice_datetime("2025-10-01T10:00:00", SYDNEY, REFERENCE, treat_as_local=True)
        assert result == utc(2025, 10, 1, 0, 0)

    def test_exactly_now_is_not_rolled(self):
        result = normalize_voice_datetime("2025-11-01T00:00:00Z", SYDNEY, REFERENCE)
        assert result == REFERENCE

    def test_leap_day_rolls_to_first_of_march(self):
        result = normalize_voice_datetime("2024-02-29T10:00:00Z", timezone.utc, REFERENCE)
        assert result == utc(2026, 3, 1, 10, 0)

    @pytest.mark.parametrize("raw", ["tomorrow at 2", "2025-13-01T10:00:00", ""])
    def test_unparseable_input_raises(self, raw):
        with pytest.raises(InvalidRequestError):
            normalize_voice_datetime(raw, SYDNEY, REFERENCE, treat_as_local=True)


class TestLoadZone:

    def test_known_zone(self):
        assert load_zone("Australia/Sydney") == SYDNEY

    def test_unknown_zone_falls_back_to_fixed_offset(self):
        zone = load_zone("Mars/Olympus_Mons", 10)
        assert zone.utcoffset(None) == timedelta(hours=10)


class TestFormatting:
    value = utc(2025, 12, 5, 3, 0)

    def test_full(self):
        assert format_full(self.value, SYDNEY) == "Friday 5 December 2025 at 2:00 pm"

    def test_short(self):
        assert format_short(self.value, SYDNEY) == "5 December at 2:00 pm"

    def test_basic(self):
        assert format_basic(self.value, SYDNEY) == "05/12/2025, 2:00:00 pm"

    def test_date(self):
        assert format_date(self.value, SYDNEY) == "05/12/2025"

    def test_midnight_and_noon(self):
        assert format_short(utc(2025, 12, 4, 13, 0), SYDNEY) == "5 December at 12:00 am"
        assert format_short(utc(2025, 12, 5, 1, 30), SYDNEY) == "5 December at 12:30 pm"
