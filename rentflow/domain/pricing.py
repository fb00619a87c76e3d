"""Rental pricing domain logic.

Amounts are Decimal in major currency units (dollars):
- rental_amount = daily_rate * days
- service_fee = 5% of rental_amount
- insurance = rental_amount * tier rate (none 0%, basic 5%, premium 10%)
- deposit = fixed equipment deposit, else daily_rate * deposit percentage
Each component is rounded half-up to cents before the total is summed, so the
total never drifts from its parts.
"""

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from rentflow.config import settings
from rentflow.core.exceptions import PreconditionNotMet, PricingMismatch

CENT = Decimal("0.01")


class InsuranceType(str, Enum):
    """Insurance tiers offered at checkout."""

    NONE = "none"
    BASIC = "basic"
    PREMIUM = "premium"


@dataclass(frozen=True)
class DepositPolicy:
    """Equipment damage deposit configuration."""

    fixed_amount: Decimal | None = None
    percentage: Decimal | None = None  # percent of the daily rate


@dataclass(frozen=True)
class PriceBreakdown:
    """Authoritative price for a rental."""

    daily_rate: Decimal
    days: int
    rental_amount: Decimal
    service_fee: Decimal
    insurance_type: str
    insurance_amount: Decimal
    deposit_amount: Decimal
    tax: Decimal
    total: Decimal

    @property
    def total_cents(self) -> int:
        return to_cents(self.total)

    def as_dict(self) -> dict[str, str | int]:
        return {
            "daily_rate": str(self.daily_rate),
            "days": self.days,
            "rental_amount": str(self.rental_amount),
            "service_fee": str(self.service_fee),
            "insurance_type": self.insurance_type,
            "insurance_amount": str(self.insurance_amount),
            "deposit_amount": str(self.deposit_amount),
            "tax": str(self.tax),
            "total": str(self.total),
        }


def round_to_cents(amount: Decimal | int | float | str) -> Decimal:
    """Round half-up to two decimal places."""
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


def rental_days(start_date: date, end_date: date) -> int:
    """Billable days for a date range.

    A same-day rental bills one day. Raises when the range is reversed or
    longer than the configured maximum.
    """
    if end_date < start_date:
        raise PreconditionNotMet("End date must be on or after start date")
    days = max((end_date - start_date).days, settings.min_rental_days)
    if days > settings.max_rental_days:
        raise PreconditionNotMet(f"Maximum rental period is {settings.max_rental_days} days")
    return days


def insurance_rate(insurance_type: str | InsuranceType | None) -> Decimal:
    """Insurance rate as a percentage of the rental amount."""
    if insurance_type is None:
        return Decimal("0")
    if isinstance(insurance_type, InsuranceType):
        insurance_type = insurance_type.value
    try:
        return Decimal(settings.insurance_rates[insurance_type])
    except KeyError:
        raise PreconditionNotMet(f"Unknown insurance type: {insurance_type}")


def deposit_amount(daily_rate: Decimal, policy: DepositPolicy | None) -> Decimal:
    if policy is None:
        return Decimal("0.00")
    if policy.fixed_amount is not None and policy.fixed_amount > 0:
        return round_to_cents(policy.fixed_amount)
    if policy.percentage is not None and policy.percentage > 0:
        return round_to_cents(Decimal(daily_rate) * Decimal(policy.percentage) / Decimal("100"))
    return Decimal("0.00")


def compute_total(
    daily_rate: Decimal | int | str,
    start_date: date,
    end_date: date,
    insurance_type: str | InsuranceType | None = InsuranceType.NONE,
    deposit_policy: DepositPolicy | None = None,
) -> PriceBreakdown:
    """Compute the authoritative price breakdown for a rental."""
    rate = Decimal(str(daily_rate))
    if rate <= 0:
        raise PreconditionNotMet("Daily rate must be positive")

    days = rental_days(start_date, end_date)
    rental_amount = round_to_cents(rate * days)
    service_fee = round_to_cents(rental_amount * settings.service_fee_percent / Decimal("100"))
    insurance_amount = round_to_cents(rental_amount * insurance_rate(insurance_type) / Decimal("100"))
    deposit = deposit_amount(rate, deposit_policy)
    tax = Decimal("0.00")

    tier = insurance_type.value if isinstance(insurance_type, InsuranceType) else (insurance_type or "none")
    return PriceBreakdown(
        daily_rate=rate,
        days=days,
        rental_amount=rental_amount,
        service_fee=service_fee,
        insurance_type=tier,
        insurance_amount=insurance_amount,
        deposit_amount=deposit,
        tax=tax,
        total=rental_amount + service_fee + insurance_amount + deposit + tax,
    )


def verify_client_total(
    breakdown: PriceBreakdown,
    client_total: Decimal | int | float | str | None,
    tolerance: Decimal | None = None,
) -> None:
    """Reject a client-submitted total that strays from the server total.

    The client figure is advisory; the server breakdown is always what gets
    charged.
    """
    if client_total is None:
        return
    tolerance = settings.pricing_tolerance if tolerance is None else tolerance
    submitted = Decimal(str(client_total))
    if abs(submitted - breakdown.total) > tolerance:
        raise PricingMismatch(server_total=breakdown.total, client_total=submitted)


def to_cents(amount: Decimal) -> int:
    """Convert a major-unit amount to integer cents for the payment provider."""
    return int((Decimal(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))
