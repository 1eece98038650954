import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def add_months(d: date, count: int) -> date:
    total = d.year * 12 + (d.month - 1) + count
    return date(total // 12, total % 12 + 1, 1)


def months_between(start: date, end: date) -> int:
    return (end.year - start.year) * 12 + (end.month - start.month)


def parse_iso_date(value: str) -> date:
    if not value or not ISO_DATE_RE.match(value):
        raise ValueError("Invalid date format. Use YYYY-MM-DD")
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ValueError("Invalid date format. Use YYYY-MM-DD") from exc


def parse_date_range(start: str, end: str) -> Period:
    start_date = parse_iso_date(start)
    end_date = parse_iso_date(end)
    if start_date > end_date:
        raise ValueError("Start date must be before end date")
    return Period("custom", start_date, end_date)


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Optional[Period]:
    """Map ``period`` query parameters to a date range; ``None`` means unbounded."""
    today = today or local_today()
    if not period or period == "all":
        if start or end:
            return parse_date_range(start or "", end or "")
        return None
    if period == "last_month":
        previous = add_months(today.replace(day=1), -1)
        return Period(
            "last_month", previous, month_end(previous.year, previous.month)
        )
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        return parse_date_range(start, end)
    if period == "last_12_months":
        return Period("last_12_months", add_months(today.replace(day=1), -11), today)

    return Period(
        "this_month",
        month_start(today.year, today.month),
        month_end(today.year, today.month),
    )
