from datetime import date, timedelta
from decimal import Decimal

import pytest

from rentflow.core.exceptions import PreconditionNotMet, PricingMismatch
from rentflow.domain.pricing import (
    DepositPolicy,
    InsuranceType,
    compute_total,
    round_to_cents,
    to_cents,
    verify_client_total,
)

START = date(2026, 3, 10)


def test_three_day_basic_insurance_with_fixed_deposit():
    breakdown = compute_total(
        Decimal("40"),
        START,
        START + timedelta(days=3),
        InsuranceType.BASIC,
        DepositPolicy(fixed_amount=Decimal("50")),
    )

    assert breakdown.days == 3
    assert breakdown.rental_amount == Decimal("120.00")
    assert breakdown.service_fee == Decimal("6.00")
    assert breakdown.insurance_amount == Decimal("6.00")
    assert breakdown.deposit_amount == Decimal("50.00")
    assert breakdown.total == Decimal("182.00")
    assert breakdown.total_cents == 18200


def test_client_total_within_two_cents_is_accepted():
    breakdown = compute_total("40", START, START + timedelta(days=3), "basic", DepositPolicy(Decimal("50")))

    verify_client_total(breakdown, Decimal("182.01"))
    verify_client_total(breakdown, "181.98")
    verify_client_total(breakdown, None)


def test_client_total_outside_tolerance_is_rejected():
    breakdown = compute_total("40", START, START + timedelta(days=3), "basic", DepositPolicy(Decimal("50")))

    with pytest.raises(PricingMismatch) as exc:
        verify_client_total(breakdown, Decimal("185.00"))

    assert exc.value.server_total == Decimal("182.00")
    assert exc.value.to_dict()["code"] == "pricing_mismatch"


def test_same_day_rental_bills_one_day():
    breakdown = compute_total("25.50", START, START)

    assert breakdown.days == 1
    assert breakdown.rental_amount == Decimal("25.50")
    assert breakdown.insurance_type == "none"
    assert breakdown.insurance_amount == Decimal("0.00")


def test_percentage_deposit_is_taken_from_daily_rate():
    breakdown = compute_total(
        "80", START, START + timedelta(days=2), "premium", DepositPolicy(percentage=Decimal("25"))
    )

    assert breakdown.insurance_amount == Decimal("16.00")
    assert breakdown.deposit_amount == Decimal("20.00")
    assert breakdown.total == Decimal("160.00") + Decimal("8.00") + Decimal("16.00") + Decimal("20.00")


def test_fixed_deposit_wins_over_percentage():
    breakdown = compute_total(
        "80", START, START + timedelta(days=1), deposit_policy=DepositPolicy(Decimal("100"), Decimal("25"))
    )

    assert breakdown.deposit_amount == Decimal("100.00")


def test_components_are_rounded_before_summing():
    # 3 x 33.33 = 99.99; 5% fee = 4.9995 -> 5.00
    breakdown = compute_total("33.33", START, START + timedelta(days=3), "basic")

    assert breakdown.service_fee == Decimal("5.00")
    assert breakdown.insurance_amount == Decimal("5.00")
    assert breakdown.total == breakdown.rental_amount + breakdown.service_fee + breakdown.insurance_amount


def test_reversed_range_is_rejected():
    with pytest.raises(PreconditionNotMet):
        compute_total("40", START, START - timedelta(days=1))


def test_rental_longer_than_maximum_is_rejected():
    with pytest.raises(PreconditionNotMet, match="Maximum rental period"):
        compute_total("40", START, START + timedelta(days=31))


def test_unknown_insurance_tier_is_rejected():
    with pytest.raises(PreconditionNotMet, match="Unknown insurance type"):
        compute_total("40", START, START + timedelta(days=1), "platinum")


def test_non_positive_rate_is_rejected():
    with pytest.raises(PreconditionNotMet):
        compute_total("0", START, START + timedelta(days=1))


def test_cent_conversion_rounds_half_up():
    assert round_to_cents("2.675") == Decimal("2.68")
    assert to_cents(Decimal("182.00")) == 18200
    assert to_cents(Decimal("0.005")) == 1
