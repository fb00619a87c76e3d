import json
import os
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from itertools import count
from uuid import UUID, uuid4

# Settings are read once at import; keep the app off Postgres.
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite://")
os.environ.setdefault("ENVIRONMENT", "development")

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rentflow.core.immutability import register_immutability_enforcement
from rentflow.core.permissions import Actor, UserRole
from rentflow.core.security import create_access_token
from rentflow.database import Base, get_db
from rentflow.gateways.base import GatewayType, PaymentGateway, PaymentResult, RefundResult
from rentflow.models.booking import Equipment
from rentflow.models.payment import PaymentLedgerEntry
from rentflow.schemas.booking import BookingCreate, InspectionSubmit
from rentflow.schemas.transition import ReportDamagePayload
from rentflow.services.booking_state_machine import BookingStateMachine
from rentflow.services.gateway_service import GatewayService
from rentflow.services.ledger_service import LedgerService
from rentflow.services.notification_service import NotificationService
from rentflow.services.payment_orchestrator import PaymentOrchestrator
from rentflow.services.settlement_service import SettlementService

WEBHOOK_SIGNATURE = "t=1,v1=valid"


class FakeGateway(PaymentGateway):
    """In-memory provider. Intents open in requires_payment_method."""

    def __init__(self) -> None:
        self.intents: dict[str, str] = {}
        self.created: list[dict] = []
        self.refunds: list[dict] = []
        self.fail_refunds = False
        self._ids = count(1)

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.MANUAL

    async def create_payment(self, amount, currency, reference_id, description, metadata=None):
        intent_id = f"pi_test_{next(self._ids)}"
        self.intents[intent_id] = "requires_payment_method"
        self.created.append({"intent_id": intent_id, "amount": amount, "reference_id": reference_id})
        return PaymentResult(
            success=True,
            transaction_id=intent_id,
            client_secret=f"{intent_id}_secret",
            status="requires_payment_method",
        )

    async def retrieve_payment(self, transaction_id):
        status = self.intents.get(transaction_id)
        if status is None:
            return PaymentResult(success=False, error_message="No such payment_intent")
        return PaymentResult(
            success=True,
            transaction_id=transaction_id,
            client_secret=f"{transaction_id}_secret",
            status=status,
        )

    async def process_refund(self, transaction_id, amount, reason):
        if self.fail_refunds:
            return RefundResult(success=False, error_message="Provider unavailable")
        self.refunds.append({"intent_id": transaction_id, "amount": amount, "reason": reason})
        return RefundResult(success=True, refund_id=f"re_{transaction_id}")

    def verify_webhook(self, payload, signature):
        if signature != WEBHOOK_SIGNATURE:
            return None
        return json.loads(payload)


class RecordingNotifier(NotificationService):
    """Keeps notifications in memory instead of delivering them."""

    def __init__(self) -> None:
        super().__init__()
        self.sent: list[dict] = []

    async def notify(
        self,
        user_id,
        notification_type,
        title,
        message,
        related_entity_type="booking",
        related_entity_id=None,
        priority=NotificationService.MEDIUM,
    ) -> None:
        self.sent.append(
            {
                "user_id": user_id,
                "type": notification_type,
                "title": title,
                "priority": priority,
                "related_entity_id": related_entity_id,
            }
        )

    def titles_for(self, user_id: UUID) -> list[str]:
        return [n["title"] for n in self.sent if n["user_id"] == user_id]


class BrokenSettlement:
    """Stands in for settlement when the escrow side effect must fail."""

    async def release(self, *args, **kwargs):
        raise RuntimeError("ledger offline")

    async def refund(self, *args, **kwargs):
        raise RuntimeError("ledger offline")


@pytest.fixture(scope="session", autouse=True)
def _immutability():
    register_immutability_enforcement()


@pytest.fixture
async def engine(tmp_path):
    # File-backed so separate sessions see each other's commits.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'rentflow.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def today() -> date:
    return datetime.now(UTC).date()


@pytest.fixture
def owner() -> Actor:
    return Actor(id=uuid4())


@pytest.fixture
def renter() -> Actor:
    return Actor(id=uuid4())


@pytest.fixture
def admin() -> Actor:
    return Actor(id=uuid4(), role=UserRole.ADMIN)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def settlement(gateway) -> SettlementService:
    return SettlementService(ledger=LedgerService(), gateways=GatewayService(gateway=gateway))


@pytest.fixture
def state_machine(settlement, notifier) -> BookingStateMachine:
    return BookingStateMachine(ledger=settlement.ledger, settlement=settlement, notifier=notifier)


@pytest.fixture
def orchestrator(state_machine, settlement) -> PaymentOrchestrator:
    return PaymentOrchestrator(
        state_machine=state_machine,
        ledger=settlement.ledger,
        gateways=settlement.gateways,
        settlement=settlement,
    )


@pytest.fixture
async def equipment(db, owner) -> Equipment:
    item = Equipment(
        owner_id=owner.id,
        title="Canon EOS R5",
        daily_rate=Decimal("40.00"),
        damage_deposit_amount=Decimal("50.00"),
    )
    db.add(item)
    await db.commit()
    return item


class Lifecycle:
    """Drives a booking through the happy path up to a requested status."""

    STEPS = (
        "pending",
        "awaiting_pickup_inspection",
        "awaiting_start_date",
        "active",
        "awaiting_return_inspection",
        "pending_owner_review",
        "disputed",
    )

    def __init__(self, db, state_machine, orchestrator, renter, owner, equipment, today):
        self.db = db
        self.state_machine = state_machine
        self.orchestrator = orchestrator
        self.renter = renter
        self.owner = owner
        self.equipment = equipment
        self.today = today

    async def request(self, start: date | None = None, days: int = 3, insurance: str = "basic") -> UUID:
        start = start or self.today
        booking = await self.state_machine.create_request(
            self.db,
            self.renter,
            BookingCreate(
                equipment_id=self.equipment.id,
                start_date=start,
                end_date=start + timedelta(days=days),
                insurance_type=insurance,
            ),
        )
        return booking.id

    async def pay(self, booking_id: UUID) -> str:
        intent = await self.orchestrator.create_or_reuse_intent(self.db, booking_id, self.renter)
        await self.orchestrator.on_settlement_confirmed(self.db, intent.payment_intent_id, "succeeded")
        return intent.payment_intent_id

    async def inspect(self, booking_id: UUID, inspection_type: str) -> None:
        await self.state_machine.record_inspection(
            self.db, booking_id, self.renter, InspectionSubmit(inspection_type=inspection_type)
        )

    async def advance(self, status: str, start: date | None = None) -> UUID:
        target = self.STEPS.index(status)
        booking_id = await self.request(start=start)
        sm, db = self.state_machine, self.db
        steps = [
            lambda: self.pay(booking_id),
            lambda: self._pickup(booking_id),
            lambda: sm.start_rental(db, booking_id, self.renter),
            lambda: sm.initiate_return(db, booking_id, self.renter),
            lambda: self._return(booking_id),
            lambda: sm.owner_report_damage(
                db,
                booking_id,
                self.owner,
                ReportDamagePayload(description="Cracked lens hood", estimated_cost=Decimal("30.00")),
            ),
        ]
        for step in steps[:target]:
            await step()
        return booking_id

    async def _pickup(self, booking_id: UUID) -> None:
        await self.inspect(booking_id, "pickup")
        await self.state_machine.complete_pickup_inspection(self.db, booking_id, self.renter)

    async def _return(self, booking_id: UUID) -> None:
        await self.inspect(booking_id, "return")
        await self.state_machine.complete_return_inspection(self.db, booking_id, self.renter)


@pytest.fixture
def lifecycle(db, state_machine, orchestrator, renter, owner, equipment, today) -> Lifecycle:
    return Lifecycle(db, state_machine, orchestrator, renter, owner, equipment, today)


async def ledger_entries(db, booking_id: UUID) -> list[tuple[str, str | None, str]]:
    result = await db.execute(
        select(PaymentLedgerEntry)
        .where(PaymentLedgerEntry.booking_request_id == booking_id)
        .order_by(PaymentLedgerEntry.created_at)
    )
    return [(e.field, e.from_status, e.to_status) for e in result.scalars().all()]


def auth_headers(actor: Actor) -> dict[str, str]:
    token = create_access_token(actor.id, role=actor.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client(session_maker, gateway, notifier, monkeypatch):
    from rentflow.main import app
    from rentflow.services.booking_state_machine import booking_state_machine
    from rentflow.services.gateway_service import gateway_service

    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(gateway_service, "_override", gateway)
    monkeypatch.setattr(booking_state_machine, "notifier", notifier)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
