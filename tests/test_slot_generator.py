from datetime import datetime, time, timedelta, timezone

import pytest

from presentation_errors import ConfigError
from slot_generator import generate_slots, preview_slot_times

UTC = timezone.utc


def _day(hour=0, minute=0, day=10):
    return datetime(2026, 3, day, hour, minute, tzinfo=UTC)


def test_slots_step_by_duration_plus_buffer():
    slots = generate_slots(_day(), _day(23, 59), 15, 5, time(9, 0), time(10, 0))
    assert [slot.label for slot in slots] == ["09:00", "09:20", "09:40"]
    assert slots[-1].end == _day(9, 55)


def test_generation_is_deterministic():
    args = (_day(), _day(23, 59, day=12), 30, 10, time(9, 0), time(12, 0))
    assert generate_slots(*args) == generate_slots(*args)


def test_slots_stay_inside_day_and_window():
    start, end = _day(9, 30), _day(16, 0, day=11)
    slots = generate_slots(start, end, 45, 15, time(9, 0), time(17, 0))
    assert slots
    for slot in slots:
        assert slot.end - slot.start == timedelta(minutes=45)
        assert slot.start >= start and slot.end <= end
        assert slot.start.time() >= time(9, 0)
        assert slot.end.time() <= time(17, 0)
    for earlier, later in zip(slots, slots[1:]):
        assert later.start >= earlier.end + timedelta(minutes=15) or later.start.date() > earlier.start.date()


def test_every_day_of_window_gets_slots():
    slots = generate_slots(_day(), _day(23, 59, day=12), 60, 0, time(9, 0), time(11, 0))
    assert [slot.start for slot in slots] == [
        _day(9), _day(10), _day(9, day=11), _day(10, day=11), _day(9, day=12), _day(10, day=12),
    ]


def test_slot_ending_exactly_at_close_is_kept():
    slots = generate_slots(_day(), _day(23, 59), 30, 0, time(9, 0), time(10, 0))
    assert [slot.label for slot in slots] == ["09:00", "09:30"]


def test_no_room_yields_empty_list():
    assert generate_slots(_day(), _day(23, 59), 90, 0, time(9, 0), time(10, 0)) == []


def test_window_shorter_than_day_drops_outside_slots():
    slots = generate_slots(_day(9, 20), _day(9, 40), 15, 5, time(9, 0), time(10, 0))
    assert [slot.label for slot in slots] == ["09:20"]


@pytest.mark.parametrize(
    "duration,buffer,daily_start,daily_end,key",
    [
        (0, 5, time(9, 0), time(10, 0), "slot_config.duration_minutes"),
        (-15, 5, time(9, 0), time(10, 0), "slot_config.duration_minutes"),
        (15, -1, time(9, 0), time(10, 0), "slot_config.buffer_minutes"),
        (15, 5, time(10, 0), time(9, 0), "slot_config.daily_end_time"),
        (15, 5, time(9, 0), time(9, 0), "slot_config.daily_end_time"),
    ],
)
def test_invalid_config_raises(duration, buffer, daily_start, daily_end, key):
    with pytest.raises(ConfigError) as exc:
        generate_slots(_day(), _day(23, 59), duration, buffer, daily_start, daily_end)
    assert key in exc.value.errors


def test_reversed_window_raises_with_every_error():
    with pytest.raises(ConfigError) as exc:
        generate_slots(_day(23, 59), _day(), 0, 5, time(9, 0), time(10, 0))
    assert set(exc.value.errors) == {"slot_config.duration_minutes", "presentation_window.end"}


def test_preview_labels_one_day():
    assert preview_slot_times(15, 5, time(9, 0), time(10, 0)) == ["09:00", "09:20", "09:40"]


def test_preview_rejects_bad_config():
    with pytest.raises(ConfigError):
        preview_slot_times(15, 5, time(17, 0), time(9, 0))
