import re
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

_TWELVE_HOUR = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*([AaPp])\.?\s*[Mm]\.?$")
_TWENTY_FOUR_HOUR = re.compile(r"^(\d{1,2}):(\d{2})(?::\d{2})?$")


class SlotTimeError(ValueError):
    pass


def parse_slot_time(value: str) -> time:
    """
    Accepts "9:30 AM", "9 PM", "09:30pm" and 24-hour "18:00".
    Anything else is rejected rather than guessed.
    """
    raw = (value or "").strip()

    m = _TWELVE_HOUR.match(raw)
    if m:
        hour = int(m.group(1))
        minute = int(m.group(2) or 0)
        if not 1 <= hour <= 12 or minute > 59:
            raise SlotTimeError(f"Invalid slot time: {value!r}")
        hour = hour % 12
        if m.group(3).lower() == "p":
            hour += 12
        return time(hour, minute)

    m = _TWENTY_FOUR_HOUR.match(raw)
    if m:
        hour, minute = int(m.group(1)), int(m.group(2))
        if hour > 23 or minute > 59:
            raise SlotTimeError(f"Invalid slot time: {value!r}")
        return time(hour, minute)

    raise SlotTimeError(f"Invalid slot time: {value!r}")


def slot_start_utc(day: date, slot_time: str, tz_name: str = "UTC") -> datetime:
    """Naive UTC start of a slot expressed in the business timezone."""
    tz = timezone.utc if tz_name == "UTC" else ZoneInfo(tz_name)
    local = datetime.combine(day, parse_slot_time(slot_time)).replace(tzinfo=tz)
    return local.astimezone(timezone.utc).replace(tzinfo=None)
