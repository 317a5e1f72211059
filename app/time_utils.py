import os
from datetime import datetime, date, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_LOCAL_TZ = None


def _resolve_local_tz():
    global _LOCAL_TZ
    if _LOCAL_TZ is not None:
        return _LOCAL_TZ
    tz_name = os.environ.get("APP_TIMEZONE") or os.environ.get("TZ")
    if tz_name:
        try:
            _LOCAL_TZ = ZoneInfo(tz_name)
            return _LOCAL_TZ
        except (ZoneInfoNotFoundError, ValueError):
            _LOCAL_TZ = None
    _LOCAL_TZ = datetime.now().astimezone().tzinfo
    return _LOCAL_TZ


def local_now():
    tz = _resolve_local_tz()
    if tz:
        return datetime.now(tz).replace(tzinfo=None)
    return datetime.now()


def local_today():
    return local_now().date()


def parse_date(value):
    """Terima date/datetime/string ISO, hasilkan date atau None."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(text[:10], "%Y-%m-%d").date()
    except ValueError:
        return None


def day_bounds(start_date, end_date):
    """
    Rentang tanggal inklusif satu hari penuh: 00:00:00 s/d 23:59:59.999999.
    Rentang terbalik ditukar.
    """
    if start_date and end_date and end_date < start_date:
        start_date, end_date = end_date, start_date
    start = datetime.combine(start_date, time.min) if start_date else None
    end = datetime.combine(end_date, time.max) if end_date else None
    return start, end


def format_datetime(value):
    return value.isoformat() if value else None
