"""Custom application exceptions.

Each failure the booking core can produce is an ``AppException`` subclass so
the API layer renders it with the right status code and enough detail for the
caller to show an actionable message.
"""

from typing import Any

from fastapi import HTTPException, status


class AppException(HTTPException):
    """Base application exception."""

    code: str = "internal_error"
    retryable: bool = False

    def __init__(
        self,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail: str = "An unexpected error occurred",
        headers: dict[str, str] | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.context = context or {}
        super().__init__(status_code=status_code, detail=detail, headers=headers)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for an error response body."""
        body: dict[str, Any] = {"detail": self.detail, "code": self.code}
        if self.retryable:
            body["retryable"] = True
        body.update(self.context)
        return body


class ValidationError(AppException):
    """Validation error exception."""

    code = "validation_error"

    def __init__(self, detail: str = "Validation failed", errors: list[dict[str, Any]] | None = None) -> None:
        self.errors = errors
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


class NotFoundError(AppException):
    """Resource not found exception."""

    code = "not_found"

    def __init__(self, resource: str = "Resource", identifier: str | None = None) -> None:
        detail = f"{resource} not found"
        if identifier:
            detail = f"{resource} with ID '{identifier}' not found"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            context={"resource": resource},
        )


class AuthenticationError(AppException):
    """Authentication failed exception."""

    code = "unauthenticated"

    def __init__(self, detail: str = "Authentication failed") -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class Forbidden(AppException):
    """Caller is not allowed to perform this action on this booking."""

    code = "forbidden"

    def __init__(
        self,
        detail: str = "You don't have permission to perform this action",
        required_role: str | None = None,
    ) -> None:
        self.required_role = required_role
        context = {"required_role": required_role} if required_role else None
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail, context=context)


class InvalidStateTransition(AppException):
    """Booking is not in a state the requested transition accepts."""

    code = "invalid_state_transition"

    def __init__(
        self,
        current_status: str,
        attempted: str,
        allowed_from: list[str] | None = None,
    ) -> None:
        self.current_status = current_status
        self.attempted = attempted
        self.allowed_from = sorted(allowed_from or [])
        detail = f"Cannot {attempted} from status: {current_status}"
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            context={
                "current_status": current_status,
                "attempted": attempted,
                "allowed_from": self.allowed_from,
            },
        )


class PreconditionNotMet(AppException):
    """A data precondition of the transition is not satisfied."""

    code = "precondition_not_met"

    def __init__(self, detail: str, current_status: str | None = None) -> None:
        self.current_status = current_status
        context = {"current_status": current_status} if current_status else None
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail, context=context)


class PricingMismatch(AppException):
    """Client-submitted total deviates from the server computation."""

    code = "pricing_mismatch"

    def __init__(self, server_total: Any, client_total: Any) -> None:
        self.server_total = server_total
        self.client_total = client_total
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Booking totals no longer match the quote. Please refresh and try again.",
            context={"server_total": str(server_total), "client_total": str(client_total)},
        )


class DatesNotAvailable(AppException):
    """Dates not available exception."""

    code = "dates_not_available"

    def __init__(self, detail: str = "These dates are no longer available. Please select different dates.") -> None:
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class AlreadyPaid(AppException):
    """A succeeded payment already exists for the booking."""

    code = "already_paid"

    def __init__(self, detail: str = "Payment already completed") -> None:
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class AlreadyInState(AppException):
    """The requested change has already been applied."""

    code = "already_in_state"

    def __init__(self, current_status: str, detail: str | None = None) -> None:
        self.current_status = current_status
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail or f"Already in status: {current_status}",
            context={"current_status": current_status},
        )


class PersistenceError(AppException):
    """Underlying store failure. The change was not applied."""

    code = "persistence_error"
    retryable = True

    def __init__(self, detail: str = "The operation could not be saved. Please try again.") -> None:
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


class PaymentProviderError(PersistenceError):
    """External payment provider call failed."""

    code = "payment_provider_error"

    def __init__(self, detail: str = "Payment provider is unavailable. Please try again.") -> None:
        super().__init__(detail=detail)
        self.status_code = status.HTTP_502_BAD_GATEWAY


class RateLimitExceeded(AppException):
    """Rate limit exceeded exception."""

    code = "rate_limited"

    def __init__(self, detail: str = "Too many requests. Please try again later.") -> None:
        super().__init__(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=detail)
