import re
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings

MONTH_KEY_RE = re.compile(r"(\d{4})-(0[1-9]|1[0-2])")


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def parse_month_key(key: str) -> tuple[int, int]:
    match = MONTH_KEY_RE.fullmatch(key or "")
    if not match:
        raise ValueError(f"Invalid month: {key!r} (expected YYYY-MM)")
    return int(match.group(1)), int(match.group(2))


def month_start(key: str) -> date:
    year, month = parse_month_key(key)
    return date(year, month, 1)


def month_end(key: str) -> date:
    year, month = parse_month_key(key)
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def current_month_key(today: Optional[date] = None) -> str:
    return month_key(today or local_today())


def month_label(key: str) -> str:
    return month_start(key).strftime("%B %Y")
