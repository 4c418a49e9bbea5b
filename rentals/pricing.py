from datetime import date

from common.errors import InvalidRequestError


def inclusive_days(start_date: date, end_date: date) -> int:
    """Number of rental days, counting both the start and the end date."""
    if end_date < start_date:
        raise InvalidRequestError(
            f"End date {end_date.isoformat()} must not be before start date {start_date.isoformat()}"
        )
    return (end_date - start_date).days + 1


def rental_cost(start_date: date, end_date: date, price_per_day_cents: int) -> int:
    return price_per_day_cents * inclusive_days(start_date, end_date)
