"""Core utilities and security modules."""

from rentflow.core.exceptions import (
    AlreadyInState,
    AlreadyPaid,
    AppException,
    AuthenticationError,
    DatesNotAvailable,
    Forbidden,
    InvalidStateTransition,
    NotFoundError,
    PaymentProviderError,
    PersistenceError,
    PreconditionNotMet,
    PricingMismatch,
    RateLimitExceeded,
    ValidationError,
)
from rentflow.core.permissions import SYSTEM_ACTOR, Actor, UserRole, require_booking_role
from rentflow.core.security import actor_from_claims, create_access_token, verify_token

__all__ = [
    "AppException",
    "AlreadyInState",
    "AlreadyPaid",
    "AuthenticationError",
    "DatesNotAvailable",
    "Forbidden",
    "InvalidStateTransition",
    "NotFoundError",
    "PaymentProviderError",
    "PersistenceError",
    "PreconditionNotMet",
    "PricingMismatch",
    "RateLimitExceeded",
    "ValidationError",
    "Actor",
    "UserRole",
    "SYSTEM_ACTOR",
    "require_booking_role",
    "actor_from_claims",
    "create_access_token",
    "verify_token",
]
