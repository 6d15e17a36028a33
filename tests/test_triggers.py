"""Tests for scheduler triggers."""

from datetime import datetime, timedelta, timezone

import pytest

from curio.scheduler.triggers import DailyTrigger, IntervalTrigger


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestDailyTrigger:
    def test_later_today(self):
        assert DailyTrigger(3).next_fire_time(utc(2026, 3, 2, 1, 30)) == utc(2026, 3, 2, 3, 0)

    def test_already_passed_rolls_to_tomorrow(self):
        assert DailyTrigger(3).next_fire_time(utc(2026, 3, 2, 4, 0)) == utc(2026, 3, 3, 3, 0)

    def test_exact_fire_time_is_not_repeated(self):
        assert DailyTrigger(3, 15).next_fire_time(utc(2026, 3, 2, 3, 15)) == utc(2026, 3, 3, 3, 15)

    def test_month_boundary(self):
        assert DailyTrigger(0).next_fire_time(utc(2026, 3, 31, 23, 59)) == utc(2026, 4, 1, 0, 0)

    def test_non_utc_input_converted(self):
        plus_two = timezone(timedelta(hours=2))
        now = datetime(2026, 3, 2, 4, 30, tzinfo=plus_two)  # 02:30 UTC
        assert DailyTrigger(3).next_fire_time(now) == utc(2026, 3, 2, 3, 0)

    @pytest.mark.parametrize("hour,minute", [(24, 0), (-1, 0), (3, 60)])
    def test_invalid(self, hour, minute):
        with pytest.raises(ValueError):
            DailyTrigger(hour, minute)


class TestIntervalTrigger:
    def test_aligned_to_interval(self):
        trigger = IntervalTrigger(timedelta(minutes=60))
        assert trigger.next_fire_time(utc(2026, 3, 2, 12, 10)) == utc(2026, 3, 2, 13, 0)

    def test_on_boundary_moves_to_next(self):
        trigger = IntervalTrigger(timedelta(minutes=15))
        assert trigger.next_fire_time(utc(2026, 3, 2, 12, 15)) == utc(2026, 3, 2, 12, 30)

    def test_uneven_interval_realigns_at_midnight(self):
        trigger = IntervalTrigger(timedelta(hours=7))
        # slots at 00, 07, 14, 21 then midnight
        assert trigger.next_fire_time(utc(2026, 3, 2, 22, 0)) == utc(2026, 3, 3, 0, 0)

    def test_last_slot_before_midnight(self):
        trigger = IntervalTrigger(timedelta(hours=1))
        assert trigger.next_fire_time(utc(2026, 3, 2, 23, 30)) == utc(2026, 3, 3, 0, 0)

    def test_invalid(self):
        with pytest.raises(ValueError):
            IntervalTrigger(timedelta(0))
