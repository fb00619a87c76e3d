"""Database models."""

from rentflow.models.booking import (
    BookingRequest,
    DamageClaim,
    Equipment,
    Inspection,
    RentalEvent,
)
from rentflow.models.notification import Notification
from rentflow.models.payment import Payment, PaymentLedgerEntry

__all__ = [
    # Booking
    "Equipment",
    "BookingRequest",
    "Inspection",
    "DamageClaim",
    "RentalEvent",
    # Payment
    "Payment",
    "PaymentLedgerEntry",
    # Notification
    "Notification",
]
