"""
Shared test fixtures.

Uses a file-backed SQLite database (via aiosqlite) per test so tests run
without Docker / PostgreSQL / Redis, while two sessions still get two
real connections.  The production models are created as-is.
"""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from transferhub.domain.entities import Document, Driver, Trip
from transferhub.domain.enums import (
    REQUIRED_DOC_TYPES,
    GatewayStatus,
    VerificationStatus,
)
from transferhub.domain.errors import GatewayError
from transferhub.domain.pricing import to_minor_units
from transferhub.domain.roles import Actor, Role
from transferhub.infrastructure import models  # noqa: F401  (registers tables)
from transferhub.infrastructure.database import Base
from transferhub.infrastructure.payment_gateway import (
    GatewayEvent,
    PaymentGateway,
    PaymentIntent,
    intent_id_from_secret,
)
from transferhub.infrastructure.repositories import (
    DocumentRepository,
    DriverRepository,
    TripRepository,
)

NOW = datetime(2026, 3, 14, 9, 0, tzinfo=timezone.utc)


# ── Clock ─────────────────────────────────────────────────────────────


class FrozenClock:
    """Deterministic clock; tests move it explicitly."""

    def __init__(self, now: datetime = NOW):
        self._now = now
        self._mono = 1000.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._mono

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)
        self._mono += seconds


# ── Payment gateway double ────────────────────────────────────────────


class FakeGateway(PaymentGateway):
    """In-memory gateway.  ``confirm_status`` decides how confirmations end;
    ``failures`` are raised (in order) before any call succeeds."""

    def __init__(self, confirm_status: GatewayStatus = GatewayStatus.SUCCEEDED):
        self.confirm_status = confirm_status
        self.intents: dict[str, PaymentIntent] = {}
        self.failures: list[Exception] = []
        self.calls: list[str] = []
        self._ids = itertools.count(1)

    async def create_intent(self, amount, currency, metadata):
        self._maybe_fail("create_intent")
        intent_id = f"pi_test_{next(self._ids)}"
        intent = PaymentIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret_abc",
            status=GatewayStatus.REQUIRES_PAYMENT_METHOD,
            amount_minor=to_minor_units(amount),
            currency=currency,
            metadata=dict(metadata),
        )
        self.intents[intent_id] = intent
        return intent

    async def confirm(self, client_secret, payment_details):
        self._maybe_fail("confirm")
        return self._set_status(client_secret, self.confirm_status)

    async def retrieve(self, client_secret):
        self._maybe_fail("retrieve")
        return self.intents[intent_id_from_secret(client_secret)]

    def parse_event(self, payload, signature):
        if signature != "valid":
            raise GatewayError("Rejected webhook: bad signature", retryable=False)
        intent_id = payload.decode()
        return GatewayEvent(type="payment_intent.succeeded", intent=self.intents[intent_id])

    def settle(self, intent_id: str, status: GatewayStatus = GatewayStatus.SUCCEEDED):
        """Simulate the bank finishing a redirect / async confirmation."""
        return self._set_status(self.intents[intent_id].client_secret, status)

    def _set_status(self, client_secret: str, status: GatewayStatus) -> PaymentIntent:
        intent_id = intent_id_from_secret(client_secret)
        current = self.intents[intent_id]
        updated = PaymentIntent(
            id=current.id,
            client_secret=current.client_secret,
            status=status,
            amount_minor=current.amount_minor,
            currency=current.currency,
            metadata=current.metadata,
            next_action_url=(
                "https://bank.test/3ds" if status == GatewayStatus.REQUIRES_ACTION else None
            ),
        )
        self.intents[intent_id] = updated
        return updated

    def _maybe_fail(self, name: str) -> None:
        self.calls.append(name)
        if self.failures:
            raise self.failures.pop(0)


# ── Actors ────────────────────────────────────────────────────────────

ADMIN = Actor("admin-1", Role.ADMIN)
SUPPORT = Actor("support-1", Role.SUPPORT)
CUSTOMER = Actor("customer-1", Role.CUSTOMER)
OTHER_CUSTOMER = Actor("customer-2", Role.CUSTOMER)


def partner(account_id: str = "partner-1") -> Actor:
    return Actor(account_id, Role.PARTNER)


def headers(actor: Actor) -> dict[str, str]:
    return {"X-User-Id": actor.user_id, "X-User-Role": actor.role.value}


# ── Database fixtures ─────────────────────────────────────────────────


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


# ── Builders ──────────────────────────────────────────────────────────


async def make_driver(
    session: AsyncSession,
    account_id: str = "partner-1",
    status: VerificationStatus = VerificationStatus.VERIFIED,
    available: bool = False,
) -> Driver:
    repo = DriverRepository(session)
    driver = await repo.create(Driver(account_id=account_id))
    expected = driver.guard()
    driver.verification_status = status
    driver.is_available = available and status == VerificationStatus.VERIFIED
    await repo.save_if(driver, expected)
    return await repo.get(driver.id)


async def make_trip(
    session: AsyncSession,
    customer_id: str = "customer-1",
    scheduled_at: Optional[datetime] = None,
    price: str = "80.00",
) -> Trip:
    return await TripRepository(session).create(
        Trip(
            customer_id=customer_id,
            pickup_location="Airport Terminal 1",
            dropoff_location="Hotel Excelsior",
            scheduled_at=scheduled_at or NOW + timedelta(hours=5),
            estimated_price=Decimal(price),
        )
    )


async def upload_required_documents(
    session: AsyncSession, driver_id: int, expiry: Optional[datetime] = None
) -> None:
    repo = DocumentRepository(session)
    for doc_type in REQUIRED_DOC_TYPES:
        await repo.replace(
            Document(
                driver_id=driver_id,
                doc_type=doc_type,
                storage_location=f"docs/{driver_id}/{doc_type.value}.pdf",
                expiry_date=expiry or NOW + timedelta(days=365),
                uploaded_at=NOW,
            )
        )
