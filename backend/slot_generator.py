"""Bookable slot generation for presentation events.

Slots are materialised once, when an event is created: every day of the
presentation window is cut into ``duration`` long slots starting at the daily
start time, with ``buffer`` minutes between consecutive slots. A slot is only
emitted when it ends no later than the daily end time and lies inside the
presentation window.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, List

from presentation_errors import ConfigError
from time_utils import combine_local, ensure_timezone


@dataclass(frozen=True)
class SlotCandidate:
    start: datetime
    end: datetime

    @property
    def label(self) -> str:
        return self.start.strftime("%H:%M")


def _clock_offset(value: time) -> timedelta:
    return timedelta(hours=value.hour, minutes=value.minute, seconds=value.second)


def slot_config_errors(
    duration_minutes: int,
    buffer_minutes: int,
    daily_start_time: time,
    daily_end_time: time,
) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    if not isinstance(duration_minutes, int) or isinstance(duration_minutes, bool) or duration_minutes <= 0:
        errors["slot_config.duration_minutes"] = "Slot duration must be a positive number of minutes"
    if not isinstance(buffer_minutes, int) or isinstance(buffer_minutes, bool) or buffer_minutes < 0:
        errors["slot_config.buffer_minutes"] = "Buffer must be zero or more minutes"
    if daily_start_time >= daily_end_time:
        errors["slot_config.daily_end_time"] = "Daily end time must be after daily start time"
    return errors


def _day_offsets(
    duration_minutes: int,
    buffer_minutes: int,
    daily_start_time: time,
    daily_end_time: time,
) -> List[timedelta]:
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=duration_minutes + buffer_minutes)
    cursor = _clock_offset(daily_start_time)
    close = _clock_offset(daily_end_time)
    offsets: List[timedelta] = []
    while cursor + duration <= close:
        offsets.append(cursor)
        cursor += step
    return offsets


def preview_slot_times(
    duration_minutes: int,
    buffer_minutes: int,
    daily_start_time: time,
    daily_end_time: time,
) -> List[str]:
    """Start labels ("HH:MM") of the slots one day would hold."""
    errors = slot_config_errors(duration_minutes, buffer_minutes, daily_start_time, daily_end_time)
    if errors:
        raise ConfigError("Invalid slot configuration", errors)
    labels = []
    for offset in _day_offsets(duration_minutes, buffer_minutes, daily_start_time, daily_end_time):
        minutes = int(offset.total_seconds() // 60)
        labels.append(f"{minutes // 60:02d}:{minutes % 60:02d}")
    return labels


def generate_slots(
    window_start: datetime,
    window_end: datetime,
    duration_minutes: int,
    buffer_minutes: int,
    daily_start_time: time,
    daily_end_time: time,
) -> List[SlotCandidate]:
    errors = slot_config_errors(duration_minutes, buffer_minutes, daily_start_time, daily_end_time)
    start = ensure_timezone(window_start)
    end = ensure_timezone(window_end)
    if end < start:
        errors["presentation_window.end"] = "Presentation window end precedes its start"
    if errors:
        raise ConfigError("Invalid slot configuration", errors)

    duration = timedelta(minutes=duration_minutes)
    offsets = _day_offsets(duration_minutes, buffer_minutes, daily_start_time, daily_end_time)
    candidates: List[SlotCandidate] = []
    day: date = start.date()
    while day <= end.date():
        midnight = combine_local(day, time(0, 0))
        for offset in offsets:
            slot_start = midnight + offset
            slot_end = slot_start + duration
            if slot_start < start or slot_end > end:
                continue
            candidates.append(SlotCandidate(start=slot_start, end=slot_end))
        day += timedelta(days=1)
    return candidates


def generate_event_slots(slot_config, presentation_window) -> List[SlotCandidate]:
    """Run :func:`generate_slots` from ``SlotConfig``/``TimeWindow``-shaped objects."""
    return generate_slots(
        presentation_window.start,
        presentation_window.end,
        slot_config.duration_minutes,
        slot_config.buffer_minutes,
        slot_config.daily_start_time,
        slot_config.daily_end_time,
    )
