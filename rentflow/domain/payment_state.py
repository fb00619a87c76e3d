"""Payment, escrow and deposit state machines."""

from rentflow.core.exceptions import AlreadyInState, InvalidStateTransition

PAYMENT_TRANSITIONS = {
    "pending": {"succeeded", "failed", "cancelled"},
    "succeeded": {"refunded"},
    # a new intent may be attempted after a failed or abandoned one
    "failed": {"pending"},
    "cancelled": {"pending"},
    "refunded": set(),
}

# Escrow and deposit leave "held" exactly once and never come back.
ESCROW_TRANSITIONS = {
    "held": {"released", "refunded"},
    "released": set(),
    "refunded": set(),
}

DEPOSIT_TRANSITIONS = {
    "held": {"released", "claimed", "refunded"},
    "released": set(),
    "claimed": set(),
    "refunded": set(),
}

PAYOUT_TRANSITIONS = {
    "pending": {"released", "cancelled"},
    "released": set(),
    "cancelled": set(),
}

LEDGER_FIELDS = {
    "payment_status": PAYMENT_TRANSITIONS,
    "escrow_status": ESCROW_TRANSITIONS,
    "deposit_status": DEPOSIT_TRANSITIONS,
    "payout_status": PAYOUT_TRANSITIONS,
}


def assert_ledger_transition(field: str, current: str | None, target: str) -> None:
    transitions = LEDGER_FIELDS[field]
    if current == target:
        raise AlreadyInState(current, f"{field} is already {current}")
    allowed = transitions.get(current, set()) if current is not None else set()
    if target not in allowed:
        raise InvalidStateTransition(
            str(current),
            f"move {field} to {target}",
            [source for source, targets in transitions.items() if target in targets],
        )


def assert_payment_transition(current: str, target: str) -> None:
    assert_ledger_transition("payment_status", current, target)
