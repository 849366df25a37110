"""
Tests for the injectable clocks.
"""

from datetime import date, datetime, timedelta, timezone

from lab_kernel.domain.clock import DeterministicClock, SystemClock

NOON = datetime(2025, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


class TestDeterministicClock:
    def test_fixed_until_advanced(self):
        clock = DeterministicClock(NOON)

        assert clock.now() == clock.now() == NOON
        clock.advance(5)
        assert clock.now() == NOON + timedelta(seconds=5)

    def test_today_follows_days(self):
        clock = DeterministicClock(NOON)

        clock.advance_days(3)

        assert clock.today() == date(2025, 3, 13)

    def test_set_date_pins_noon(self):
        clock = DeterministicClock(NOON)

        clock.set_date(date(2024, 12, 31))

        assert clock.now() == datetime(2024, 12, 31, 12, tzinfo=timezone.utc)

    def test_tick(self):
        clock = DeterministicClock(NOON)

        assert clock.tick() == NOON + timedelta(seconds=1)

    def test_today_is_the_utc_date(self):
        late_evening_west = datetime(2025, 3, 10, 22, tzinfo=timezone(timedelta(hours=-5)))

        assert DeterministicClock(late_evening_west).today() == date(2025, 3, 11)


def test_system_clock_is_timezone_aware():
    assert SystemClock().now().tzinfo is not None
