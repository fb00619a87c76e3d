#!/usr/bin/env python3
"""
Full rental lifecycle flow script.

DO NOT ADD BUSINESS LOGIC HERE.
This script only orchestrates API calls.
All rules live in the backend.

Tokens are minted locally with the shared JWT secret (JWT_SECRET_KEY), the
same way the identity provider would issue them.

Usage:
    python scripts/flow_rental_lifecycle.py --equipment-id <UUID> --owner-id <UUID>
    python scripts/flow_rental_lifecycle.py --equipment-id <UUID> --owner-id <UUID> --days 3 --insurance basic
    python scripts/flow_rental_lifecycle.py --equipment-id <UUID> --owner-id <UUID> --report-damage "Scratched lens" --deduction 25

Flow:
    1. Create booking request (renter)
    2. Create payment intent (renter)
    3. Confirm manual payment (admin)
    4. Pickup inspection + complete_pickup_inspection (renter)
    5. start_rental (renter)
    6. initiate_return + return inspection + complete_return_inspection (renter)
    7. owner_confirm, or owner_report_damage + resolve_dispute (admin)
"""

import argparse
import json
import sys
import uuid
from datetime import UTC, datetime, timedelta

import httpx

from rentflow.core.security import create_access_token

BASE_URL = "http://localhost:8000"
API = "/api/v1"


def api_request(token: str, method: str, endpoint: str, data: dict | None = None) -> dict:
    """Make authenticated API request."""
    headers = {"Authorization": f"Bearer {token}"}
    url = f"{BASE_URL}{API}{endpoint}"

    if method == "GET":
        response = httpx.get(url, headers=headers, timeout=10.0)
    elif method == "POST":
        response = httpx.post(url, headers=headers, json=data or {}, timeout=10.0)
    else:
        raise ValueError(f"Unknown method: {method}")

    return {"status": response.status_code, "data": response.json() if response.text else {}}


def print_step(step: int, title: str):
    """Print step header."""
    print(f"\n{'='*60}")
    print(f"STEP {step}: {title}")
    print("="*60)


def check(result: dict, fields: list[str] | None = None) -> dict:
    """Print the result and stop the flow on an error response."""
    if result["status"] >= 400:
        print(f"ERROR ({result['status']}): {json.dumps(result['data'], indent=2)}")
        sys.exit(1)

    print(f"Status: {result['status']}")
    data = result["data"]
    if fields:
        data = {k: result["data"].get(k) for k in fields if k in result["data"]}
    print(json.dumps(data, indent=2))
    return result["data"]


def transition(token: str, booking_id: str, action: str, **payload) -> dict:
    result = api_request(token, "POST", f"/bookings/{booking_id}/transitions", {"action": action, **payload})
    return check(result, ["status", "previous_status"])


def main():
    parser = argparse.ArgumentParser(description="Full rental lifecycle flow")
    parser.add_argument("--equipment-id", required=True, help="Equipment UUID")
    parser.add_argument("--owner-id", required=True, help="Equipment owner's user UUID")
    parser.add_argument("--renter-id", default=None, help="Renter UUID (random if omitted)")
    parser.add_argument("--days", type=int, default=2, help="Rental length in days, starting today")
    parser.add_argument("--insurance", default="none", choices=["none", "basic", "premium"])
    parser.add_argument("--report-damage", default=None, help="Report damage instead of confirming")
    parser.add_argument("--deduction", default="0", help="Deposit deduction when resolving damage")
    args = parser.parse_args()

    renter_token = create_access_token(args.renter_id or uuid.uuid4())
    owner_token = create_access_token(args.owner_id)
    admin_token = create_access_token(uuid.uuid4(), role="admin")

    start = datetime.now(UTC).date()
    end = start + timedelta(days=args.days)

    # Step 1: Create booking
    print_step(1, "Create booking request")
    booking = check(
        api_request(renter_token, "POST", "/bookings", {
            "equipment_id": args.equipment_id,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "insurance_type": args.insurance,
        }),
        ["id", "status", "total_amount", "insurance_cost", "damage_deposit_amount"],
    )
    booking_id = booking["id"]

    # Step 2: Payment intent
    print_step(2, "Create payment intent")
    intent = check(
        api_request(renter_token, "POST", "/payments/intent", {
            "booking_request_id": booking_id,
            "client_total": booking["total_amount"],
        }),
        ["payment_intent_id", "reused", "rental_amount", "service_fee", "insurance_amount", "deposit_amount", "total_amount"],
    )
    print(f"\nIntent: {intent['payment_intent_id']}")

    # Step 3: Settle
    print_step(3, "Confirm manual payment (admin)")
    check(api_request(admin_token, "POST", f"/payments/{booking_id}/confirm-manual"))

    # Step 4: Pickup
    print_step(4, "Pickup inspection")
    check(api_request(renter_token, "POST", f"/bookings/{booking_id}/inspections", {
        "inspection_type": "pickup",
        "notes": "Picked up in good condition",
    }))
    transition(renter_token, booking_id, "complete_pickup_inspection")

    # Step 5: Start
    print_step(5, "Start rental")
    transition(renter_token, booking_id, "start_rental")

    # Step 6: Return
    print_step(6, "Return")
    transition(renter_token, booking_id, "initiate_return")
    check(api_request(renter_token, "POST", f"/bookings/{booking_id}/inspections", {
        "inspection_type": "return",
        "notes": "Returned",
    }))
    transition(renter_token, booking_id, "complete_return_inspection")

    # Step 7: Owner review
    if args.report_damage:
        print_step(7, "Owner reports damage, admin resolves")
        transition(owner_token, booking_id, "owner_report_damage", description=args.report_damage)
        check(api_request(admin_token, "POST", f"/disputes/{booking_id}/resolve", {
            "deduction_amount": args.deduction,
            "resolution": {"note": "Resolved by flow script"},
        }), ["status", "previous_status"])
    else:
        print_step(7, "Owner confirms return")
        transition(owner_token, booking_id, "owner_confirm")

    final = check(api_request(renter_token, "GET", f"/bookings/{booking_id}"), ["id", "status", "completed_at"])

    print("\n" + "="*60)
    print("FULL FLOW COMPLETE")
    print("="*60)
    print(f"Booking:  {booking_id}")
    print(f"Status:   {final['status']}")
    print(f"Total:    {intent['total_amount']} {intent['currency']}")


if __name__ == "__main__":
    main()
