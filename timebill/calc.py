"""Pure functions for durations, money and pay periods.

No I/O here: everything is deterministic given its arguments, which is what
makes invoice and bill recomputation reproducible.
"""

from __future__ import annotations

import calendar
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from timebill.models.entry import Entry

MONTHLY = "monthly"
SEMIMONTHLY = "semimonthly"


def round_to_increment(minutes: int, increment: int) -> int:
    """Round a duration up to the next multiple of ``increment`` minutes."""
    if increment <= 0 or minutes <= 0:
        return max(minutes, 0)
    return -(-minutes // increment) * increment


def amount_for_minutes(minutes: int, rate_cents: int) -> int:
    """Cents owed for ``minutes`` at an hourly rate, rounded half-up to the cent."""
    value = Decimal(minutes) * Decimal(rate_cents) / Decimal(60)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def billed_minutes(entry: Entry, rounded_to: int) -> int:
    return round_to_increment(entry.duration_minutes, rounded_to)


def billed_amount(entry: Entry, rounded_to: int, rate_cents: int) -> int:
    return amount_for_minutes(billed_minutes(entry, rounded_to), rate_cents)


def pay_period(on: date, frequency: str = SEMIMONTHLY) -> tuple[date, date]:
    """Return the (start, end) of the pay period containing ``on``."""
    last_day = calendar.monthrange(on.year, on.month)[1]
    month_end = on.replace(day=last_day)
    if frequency == MONTHLY:
        return on.replace(day=1), month_end
    if frequency != SEMIMONTHLY:
        raise ValueError(f"Unsupported pay period: {frequency}")
    if on.day <= 15:
        return on.replace(day=1), on.replace(day=15)
    return on.replace(day=16), month_end
