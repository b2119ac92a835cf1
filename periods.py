import re
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(frozen=True)
class MonthRange:
    start: Optional[datetime]
    end: Optional[datetime]


def parse_month(value: str) -> tuple[int, int]:
    match = _MONTH_RE.match((value or "").strip())
    if not match:
        raise ValueError(f"Invalid month '{value}', expected YYYY-MM")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month '{value}', expected YYYY-MM")
    return year, month


def month_start(year: int, month: int) -> datetime:
    return datetime(year, month, 1)


def month_end(year: int, month: int) -> datetime:
    if month == 12:
        last_day = date(year + 1, 1, 1) - date.resolution
    else:
        last_day = date(year, month + 1, 1) - date.resolution
    return datetime.combine(last_day, time.max)


def add_months(year: int, month: int, count: int) -> tuple[int, int]:
    total = year * 12 + (month - 1) + count
    return total // 12, total % 12 + 1


def month_key(value: datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def normalize_months(
    month_from: Optional[str], month_to: Optional[str]
) -> tuple[Optional[str], Optional[str]]:
    """Swap a reversed range so ``from`` is never after ``to``."""
    if month_from and month_to and parse_month(month_from) > parse_month(month_to):
        return month_to, month_from
    return month_from, month_to


def resolve_month_range(
    month_from: Optional[str] = None,
    month_to: Optional[str] = None,
    *,
    month: Optional[str] = None,
) -> MonthRange:
    """Map month strings onto an inclusive datetime range.

    ``month`` selects a single month and takes precedence. A ``from`` month
    starts at its first instant, a ``to`` month ends at its last one; a
    missing bound leaves that side open.
    """
    if month:
        year, mon = parse_month(month)
        return MonthRange(month_start(year, mon), month_end(year, mon))

    month_from, month_to = normalize_months(month_from, month_to)
    start = end = None
    if month_from:
        start = month_start(*parse_month(month_from))
    if month_to:
        end = month_end(*parse_month(month_to))
    return MonthRange(start, end)


def months_between(month_from: str, month_to: str) -> list[str]:
    month_from, month_to = normalize_months(month_from, month_to)
    year, mon = parse_month(month_from)
    last = parse_month(month_to)
    keys: list[str] = []
    while (year, mon) <= last:
        keys.append(f"{year:04d}-{mon:02d}")
        year, mon = add_months(year, mon, 1)
    return keys
