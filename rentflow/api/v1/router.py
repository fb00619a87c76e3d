"""Main API router that includes all endpoint routers."""

from fastapi import APIRouter

from rentflow.api.v1 import (
    bookings,
    disputes,
    internal,
    payments,
    webhooks,
)

api_router = APIRouter()

# Bookings
api_router.include_router(bookings.router, prefix="/bookings", tags=["Bookings"])

# Payments
api_router.include_router(payments.router, prefix="/payments", tags=["Payments"])

# Webhooks
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])

# Disputes
api_router.include_router(disputes.router, prefix="/disputes", tags=["Disputes"])

# Internal
api_router.include_router(internal.router, prefix="/internal", tags=["Internal"])
