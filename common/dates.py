from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def settlement_month(day: date) -> str:
    return day.strftime("%Y-%m")


def previous_settlement_month(day: date) -> str:
    if day.month == 1:
        return f"{day.year - 1}-12"
    return f"{day.year}-{day.month - 1:02d}"


def parse_settlement_month(value: str) -> str:
    """Validate a 'YYYY-MM' settlement month and return it normalized."""
    try:
        parsed = datetime.strptime(value, "%Y-%m")
    except (TypeError, ValueError):
        raise ValueError(f"Invalid settlement month {value!r}, expected YYYY-MM")
    return parsed.strftime("%Y-%m")


def is_past(end_date: date, today: Optional[date] = None) -> bool:
    return end_date < (today or date.today())
