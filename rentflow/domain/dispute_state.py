"""Damage claim state machine.

States: pending → accepted | disputed | escalated → resolved
"""

from rentflow.core.exceptions import InvalidStateTransition

CLAIM_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"accepted", "disputed", "escalated", "resolved"},
    "accepted": {"resolved"},
    "disputed": {"escalated", "resolved"},
    "escalated": {"resolved"},
    "resolved": set(),  # Terminal state
}

OPEN_CLAIM_STATUSES = frozenset({"pending", "accepted", "disputed", "escalated"})


def assert_claim_transition(current_status: str, new_status: str) -> None:
    """Validate damage claim state transition."""
    allowed = CLAIM_TRANSITIONS.get(current_status, set())
    if new_status not in allowed:
        raise InvalidStateTransition(
            current_status,
            f"move damage claim to {new_status}",
            [source for source, targets in CLAIM_TRANSITIONS.items() if new_status in targets],
        )
