import pytest
from datetime import datetime, timedelta, timezone

from midnight.pipeline.schedule import CronSchedule

UTC = timezone.utc


def test_nightly_next_after():
    schedule = CronSchedule.parse("0 0 * * *")
    assert schedule.next_after(datetime(2026, 10, 18, 13, 5, tzinfo=UTC)) == \
        datetime(2026, 10, 19, 0, 0, tzinfo=UTC)


def test_next_after_is_strict():
    schedule = CronSchedule.parse("0 0 * * *")
    midnight = datetime(2026, 10, 18, 0, 0, tzinfo=UTC)
    assert schedule.next_after(midnight) == midnight + timedelta(days=1)


def test_one_fire_per_day():
    schedule = CronSchedule.parse("0 0 * * *")
    instant = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
    fires = []
    for _ in range(5):
        instant = schedule.next_after(instant)
        fires.append(instant)
    assert [f.day for f in fires] == [2, 3, 4, 5, 6]
    assert all(f.hour == 0 and f.minute == 0 for f in fires)


def test_naive_datetime_treated_as_utc():
    schedule = CronSchedule.parse("0 0 * * *")
    assert schedule.next_after(datetime(2026, 10, 18, 23, 59)) == \
        datetime(2026, 10, 19, 0, 0, tzinfo=UTC)


def test_other_timezone_converted():
    schedule = CronSchedule.parse("0 0 * * *")
    plus_two = timezone(timedelta(hours=2))
    # 01:30 at +02:00 is 23:30 UTC the previous day
    assert schedule.next_after(datetime(2026, 10, 19, 1, 30, tzinfo=plus_two)) == \
        datetime(2026, 10, 19, 0, 0, tzinfo=UTC)


def test_previous_at_or_before():
    schedule = CronSchedule.parse("0 0 * * *")
    midnight = datetime(2026, 10, 18, 0, 0, tzinfo=UTC)
    assert schedule.previous_at_or_before(midnight) == midnight
    assert schedule.previous_at_or_before(midnight + timedelta(hours=5)) == midnight
    assert schedule.previous_at_or_before(midnight - timedelta(minutes=1)) == \
        midnight - timedelta(days=1)


def test_steps_ranges_and_lists():
    schedule = CronSchedule.parse("*/15 2-4 * * 1,3")
    assert schedule.minutes == frozenset({0, 15, 30, 45})
    assert schedule.hours == frozenset({2, 3, 4})
    assert schedule.days_of_week == frozenset({1, 3})


def test_sunday_as_seven():
    schedule = CronSchedule.parse("0 0 * * 7")
    # 2026-10-18 is a Sunday
    assert schedule.matches(datetime(2026, 10, 18, 0, 0, tzinfo=UTC))
    assert not schedule.matches(datetime(2026, 10, 19, 0, 0, tzinfo=UTC))


def test_day_of_month_or_day_of_week():
    schedule = CronSchedule.parse("0 0 1 * 1")
    assert schedule.matches(datetime(2026, 10, 1, 0, 0, tzinfo=UTC))   # 1st, Thursday
    assert schedule.matches(datetime(2026, 10, 19, 0, 0, tzinfo=UTC))  # Monday
    assert not schedule.matches(datetime(2026, 10, 20, 0, 0, tzinfo=UTC))


def test_leap_day():
    schedule = CronSchedule.parse("0 0 29 2 *")
    assert schedule.next_after(datetime(2026, 3, 1, tzinfo=UTC)) == datetime(2028, 2, 29, tzinfo=UTC)


@pytest.mark.parametrize("expr", [
    "0 0 * *",
    "60 0 * * *",
    "0 24 * * *",
    "0 0 0 * *",
    "0 0 * 13 *",
    "*/0 * * * *",
    "a b c d e",
    "0 0 5-1 * *",
])
def test_invalid_expressions(expr):
    with pytest.raises(ValueError):
        CronSchedule.parse(expr)


def test_never_firing_expression():
    schedule = CronSchedule.parse("0 0 31 2 *")
    with pytest.raises(ValueError):
        schedule.next_after(datetime(2026, 1, 1, tzinfo=UTC))
