"""
Accrual period arithmetic.

Periods are calendar aligned: months start on the 1st, quarters on
Jan/Apr/Jul/Oct 1st, years on Jan 1st. A period is materialized once its end
boundary is on or before the as-of date; the open period never accrues.
"""
import calendar
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterator, Optional, Tuple

from app.models.leave_policy import AccrualFrequency

CENT = Decimal("0.01")

_MONTHS_PER_PERIOD = {
    AccrualFrequency.MONTHLY.value: 1,
    AccrualFrequency.QUARTERLY.value: 3,
    AccrualFrequency.ANNUALLY.value: 12,
}


def quantize(value) -> Decimal:
    """Round to ledger precision (two decimal places, half-up)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def months_per_period(frequency: str) -> int:
    try:
        return _MONTHS_PER_PERIOD[frequency]
    except KeyError:
        raise ValueError(f"Unsupported accrual frequency: {frequency}")


def periods_per_year(frequency: str) -> int:
    return 12 // months_per_period(frequency)


def add_months(d: date, months: int) -> date:
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def period_start(d: date, frequency: str) -> date:
    """First day of the calendar period containing `d`."""
    step = months_per_period(frequency)
    month = ((d.month - 1) // step) * step + 1
    return date(d.year, month, 1)


def next_boundary(cursor: date, frequency: str) -> date:
    """First period start strictly after `cursor`."""
    return add_months(period_start(cursor, frequency), months_per_period(frequency))


def per_period_amount(annual_amount, frequency: str) -> Decimal:
    return quantize(Decimal(str(annual_amount)) / periods_per_year(frequency))


def proration_fraction(anchor: date, boundary: date, frequency: str) -> Decimal:
    """Share of the period ending at `boundary` during which the policy was active."""
    full_start = add_months(boundary, -months_per_period(frequency))
    if anchor <= full_start:
        return Decimal("1")
    total = (boundary - full_start).days
    active = (boundary - anchor).days
    return Decimal(active) / Decimal(total)


def iter_boundaries(cursor: date, as_of: date, frequency: str, until: Optional[date] = None) -> Iterator[Tuple[date, date]]:
    """
    Yield (period_open, boundary) pairs for every period that closed after
    `cursor` and on or before `as_of`. `until` (inclusive policy end date)
    stops the walk once a period would start after it.
    """
    previous = cursor
    boundary = next_boundary(cursor, frequency)
    while boundary <= as_of:
        if until is not None and previous > until:
            return
        yield previous, boundary
        previous = boundary
        boundary = next_boundary(boundary, frequency)


def years_of_service(start: date, on: date) -> int:
    years = on.year - start.year
    if (on.month, on.day) < (start.month, start.day):
        years -= 1
    return max(years, 0)
