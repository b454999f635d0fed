"""Tests for wall-clock to UTC normalization and duration resolution."""

from datetime import datetime, timezone

import pytest

from slotdesk.core.config import APPOINTMENT_DURATIONS
from slotdesk.services.scheduling.errors import InvalidTime
from slotdesk.services.scheduling.timing import normalize_time, resolve_duration


class TestNormalizeTime:
    def test_naive_time_is_read_in_the_given_zone(self):
        window = normalize_time("2025-01-01T09:00", "America/Chicago", 30)
        assert window.start == datetime(2025, 1, 1, 15, 0, tzinfo=timezone.utc)
        assert window.end == datetime(2025, 1, 1, 15, 30, tzinfo=timezone.utc)
        assert window.timezone == "America/Chicago"

    def test_summer_time_offset(self):
        window = normalize_time("2025-07-01T09:00", "America/Chicago", 30)
        assert window.start == datetime(2025, 7, 1, 14, 0, tzinfo=timezone.utc)

    def test_local_views_round_trip(self):
        window = normalize_time("2025-01-01T09:00", "America/Chicago", 45)
        assert window.local_start.isoformat() == "2025-01-01T09:00:00-06:00"
        assert window.local_end.isoformat() == "2025-01-01T09:45:00-06:00"

    def test_explicit_offset_is_an_absolute_instant(self):
        window = normalize_time("2025-01-01T09:00:00+00:00", "America/Chicago", 30)
        assert window.start == datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)

    def test_unparseable_time(self):
        with pytest.raises(InvalidTime) as exc:
            normalize_time("tomorrow at nine", "America/Chicago", 30)
        assert exc.value.field == "start_time"

    def test_unknown_timezone(self):
        with pytest.raises(InvalidTime) as exc:
            normalize_time("2025-01-01T09:00", "Mars/Olympus_Mons", 30)
        assert exc.value.field == "timezone"

    def test_non_positive_duration(self):
        with pytest.raises(InvalidTime):
            normalize_time("2025-01-01T09:00", "America/Chicago", 0)


class TestResolveDuration:
    def _resolve(self, requested, appointment_type=None, default=30):
        return resolve_duration(
            requested,
            appointment_type,
            default_minutes=default,
            type_durations=APPOINTMENT_DURATIONS,
            min_minutes=15,
            max_minutes=240,
        )

    def test_caller_value_is_clamped(self):
        assert self._resolve(5) == 15
        assert self._resolve(500) == 240
        assert self._resolve(45) == 45

    def test_caller_value_beats_type(self):
        assert self._resolve(90, "intake") == 90

    def test_type_map(self):
        assert self._resolve(None, "consultation") == 30
        assert self._resolve(None, "followup") == 15
        assert self._resolve(None, "Intake") == 60

    def test_falls_back_to_default(self):
        assert self._resolve(None, "appointment", default=45) == 45
        assert self._resolve(None, None, default=20) == 20
