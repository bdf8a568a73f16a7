"""Split a working window into fixed-duration slots."""

from datetime import date, datetime, time, timedelta

from app.core.exceptions import ValidationException
from app.schemas.scheduling import TimeSlot


def generate(window_start: time, window_end: time, duration_minutes: int) -> list[TimeSlot]:
    """
    Generate consecutive, non-overlapping slots inside a window.

    A trailing interval that would run past ``window_end`` is dropped.

    Args:
        window_start: Start of the working window
        window_end: End of the working window
        duration_minutes: Length of each slot

    Returns:
        Slots ordered by start time

    Raises:
        ValidationException: If the window is empty or the duration is not positive
    """
    if duration_minutes <= 0:
        raise ValidationException("Slot duration must be positive")
    if window_start >= window_end:
        raise ValidationException("Window start must be before window end")

    # Arithmetic on an arbitrary fixed day; slots never cross midnight
    anchor = date(2000, 1, 1)
    current = datetime.combine(anchor, window_start)
    end = datetime.combine(anchor, window_end)
    step = timedelta(minutes=duration_minutes)

    slots = []
    while current + step <= end:
        slots.append(TimeSlot(start=current.time(), end=(current + step).time()))
        current += step
    return slots
