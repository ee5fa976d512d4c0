"""Tests for UTC date helpers."""

from datetime import UTC, date, datetime, timedelta, timezone

from watchtrack.core.dates import utc_day


class TestUtcDay:
    def test_naive_is_taken_as_utc(self):
        assert utc_day(datetime(2025, 3, 8, 23, 30)) == date(2025, 3, 8)

    def test_aware_is_converted(self):
        sao_paulo = timezone(timedelta(hours=-3))

        assert utc_day(datetime(2025, 3, 8, 22, 0, tzinfo=sao_paulo)) == date(2025, 3, 9)
        assert utc_day(datetime(2025, 3, 8, 0, 0, tzinfo=UTC)) == date(2025, 3, 8)
