"""Booking state machine."""

from dataclasses import dataclass

from rentflow.core.exceptions import AlreadyInState, InvalidStateTransition

PENDING = "pending"
PAID = "paid"
AWAITING_PICKUP_INSPECTION = "awaiting_pickup_inspection"
AWAITING_START_DATE = "awaiting_start_date"
ACTIVE = "active"
AWAITING_RETURN_INSPECTION = "awaiting_return_inspection"
PENDING_OWNER_REVIEW = "pending_owner_review"
DISPUTED = "disputed"
COMPLETED = "completed"
CANCELLED = "cancelled"

BOOKING_TRANSITIONS = {
    PENDING: {PAID, AWAITING_PICKUP_INSPECTION, CANCELLED},
    # legacy intermediate state, never written by this service
    PAID: {AWAITING_PICKUP_INSPECTION, CANCELLED},
    AWAITING_PICKUP_INSPECTION: {AWAITING_START_DATE, CANCELLED},
    AWAITING_START_DATE: {ACTIVE, CANCELLED},
    ACTIVE: {AWAITING_RETURN_INSPECTION},
    AWAITING_RETURN_INSPECTION: {PENDING_OWNER_REVIEW},
    PENDING_OWNER_REVIEW: {COMPLETED, DISPUTED},
    DISPUTED: {COMPLETED},
    COMPLETED: set(),
    CANCELLED: set(),
}

TERMINAL_STATUSES = frozenset({COMPLETED, CANCELLED})
CANCELLABLE_STATUSES = frozenset({PENDING, PAID, AWAITING_PICKUP_INSPECTION, AWAITING_START_DATE})

# Statuses that occupy the equipment for the booked dates.
BLOCKING_STATUSES = frozenset({
    PAID,
    AWAITING_PICKUP_INSPECTION,
    AWAITING_START_DATE,
    ACTIVE,
    AWAITING_RETURN_INSPECTION,
    PENDING_OWNER_REVIEW,
    DISPUTED,
})

# Actor roles
RENTER = "renter"
OWNER = "owner"
ADMIN = "admin"
SYSTEM = "system"


@dataclass(frozen=True)
class TransitionRule:
    """Who may invoke an action, from which states, and where it lands."""

    action: str
    sources: frozenset[str]
    target: str
    actors: frozenset[str]


TRANSITION_RULES: dict[str, TransitionRule] = {
    rule.action: rule
    for rule in (
        TransitionRule(
            "complete_payment",
            frozenset({PENDING, PAID}),
            AWAITING_PICKUP_INSPECTION,
            frozenset({SYSTEM}),
        ),
        TransitionRule(
            "complete_pickup_inspection",
            frozenset({AWAITING_PICKUP_INSPECTION}),
            AWAITING_START_DATE,
            frozenset({RENTER}),
        ),
        TransitionRule(
            "start_rental",
            frozenset({AWAITING_START_DATE}),
            ACTIVE,
            frozenset({SYSTEM, ADMIN, RENTER, OWNER}),
        ),
        TransitionRule(
            "initiate_return",
            frozenset({ACTIVE}),
            AWAITING_RETURN_INSPECTION,
            frozenset({RENTER}),
        ),
        TransitionRule(
            "complete_return_inspection",
            frozenset({AWAITING_RETURN_INSPECTION}),
            PENDING_OWNER_REVIEW,
            frozenset({RENTER}),
        ),
        TransitionRule(
            "owner_confirm",
            frozenset({PENDING_OWNER_REVIEW}),
            COMPLETED,
            frozenset({OWNER}),
        ),
        TransitionRule(
            "owner_report_damage",
            frozenset({PENDING_OWNER_REVIEW}),
            DISPUTED,
            frozenset({OWNER}),
        ),
        TransitionRule(
            "resolve_dispute",
            frozenset({DISPUTED}),
            COMPLETED,
            frozenset({ADMIN, SYSTEM}),
        ),
        TransitionRule(
            "cancel",
            CANCELLABLE_STATUSES,
            CANCELLED,
            frozenset({RENTER, OWNER}),
        ),
    )
}


def assert_booking_transition(current: str, target: str) -> None:
    allowed = BOOKING_TRANSITIONS.get(current, set())
    if target not in allowed:
        raise InvalidStateTransition(current, f"move to {target}", [
            source for source, targets in BOOKING_TRANSITIONS.items() if target in targets
        ])


def assert_action_allowed(rule: TransitionRule, current: str) -> None:
    """Check the current status against an action's source states.

    A booking already sitting in the action's target raises ``AlreadyInState``
    so callers can treat a repeated request as a no-op.
    """
    if current in rule.sources:
        assert_booking_transition(current, rule.target)
        return
    if current == rule.target:
        raise AlreadyInState(current)
    raise InvalidStateTransition(current, rule.action, list(rule.sources))
