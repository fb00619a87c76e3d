"""Internal operational endpoints."""

from datetime import UTC, datetime

from fastapi import APIRouter
from pydantic import BaseModel

from rentflow.api.deps import CurrentAdmin, DbSession
from rentflow.services.reconciliation_service import reconciliation_service

router = APIRouter()


class ReconcileResponse(BaseModel):
    """Reconciliation run summary."""

    activation: dict[str, int]
    escrow_release: dict[str, int]
    cancelled_refunds: dict[str, int]
    started_at: str
    duration_ms: int


@router.post("/reconcile", response_model=ReconcileResponse)
async def run_reconciliation(
    admin: CurrentAdmin,
    db: DbSession,
) -> ReconcileResponse:
    """Run every reconciliation sweep now (admin only)."""
    started_at = datetime.now(UTC)
    summary = await reconciliation_service.run_all(db)
    duration_ms = int((datetime.now(UTC) - started_at).total_seconds() * 1000)
    return ReconcileResponse(
        **summary,
        started_at=started_at.isoformat(),
        duration_ms=duration_ms,
    )
