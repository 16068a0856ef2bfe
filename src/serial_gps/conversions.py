import math
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def nmea_to_decimal(coord: str, hemisphere: str) -> float | None:
    """Convert ``DDMM.MMMM`` / ``DDDMM.MMMM`` plus a hemisphere letter to decimal degrees.

    Latitudes (N/S) carry two degree digits, longitudes (E/W) three. Returns
    ``None`` when the value has no decimal point, is too short, or does not parse.
    """
    if not coord or "." not in coord:
        return None

    deg_len = 2 if hemisphere in ("N", "S") else 3
    if len(coord) <= deg_len:
        return None

    try:
        degrees = int(coord[:deg_len])
        minutes = float(coord[deg_len:])
    except ValueError:
        return None
    if not math.isfinite(minutes):
        return None

    value = degrees + minutes / 60
    if hemisphere in ("S", "W"):
        value = -value
    return value


def parse_nmea_datetime(
    time_str: str | None,
    date_str: str | None = None,
    today: datetime | None = None,
) -> int | None:
    """Combine ``hhmmss[.sss]`` and ``ddmmyy`` into epoch milliseconds (UTC).

    Without a usable date the calendar date of ``today`` (default: now, UTC)
    is used and only the time of day comes from the sentence.
    """
    if not time_str:
        return None

    try:
        hours = int(time_str[0:2] or 0)
        minutes = int(time_str[2:4] or 0)
        seconds = Decimal(time_str[4:] or 0)
    except (ValueError, InvalidOperation):
        return None
    if not seconds.is_finite() or seconds < 0:
        return None

    whole = int(seconds)
    # Half-up, on the decimal digits as sent
    millis = int(((seconds - whole) * 1000).quantize(Decimal(1), rounding=ROUND_HALF_UP))

    if date_str and len(date_str) >= 6:
        try:
            day = int(date_str[0:2])
            month = int(date_str[2:4])
            yy = int(date_str[4:6])
        except ValueError:
            return None
        year = 1900 + yy if yy >= 70 else 2000 + yy
    else:
        today = today or datetime.now(timezone.utc)
        year, month, day = today.year, today.month, today.day

    try:
        instant = datetime(year, month, day, hours, minutes, whole, tzinfo=timezone.utc)
    except ValueError:
        return None

    instant += timedelta(milliseconds=millis)
    return (instant - EPOCH) // timedelta(milliseconds=1)
