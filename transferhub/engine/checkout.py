"""
Booking Checkout Orchestrator
=============================

Card flow
---------
1. ``start_card_checkout`` creates a gateway intent for the quoted total.
   The booking itself travels in the intent metadata, so any later
   confirmation path can rebuild it.
2. The intent is confirmed either synchronously (``confirm_card``), after
   a 3-D Secure redirect (``complete_from_return``) or by the gateway's
   webhook (``handle_event``).  All three funnel into ``_settle``.
3. On ``succeeded`` the Trip (pending, no driver) and its Payment
   (completed, paid now) are written in one transaction.  The payment's
   unique ``gateway_reference`` makes that write idempotent across the
   three paths.
4. On ``failed`` / ``requires_payment_method`` nothing is written.

Cash flow
---------
Trip and a ``pending`` Payment are written together, no gateway call.

If the store keeps failing after the gateway captured money, the caller
gets ``CAPTURED_PENDING_FOLLOWUP`` rather than an error, and the intent id
is logged for manual reconciliation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from transferhub.domain.clock import Clock, SystemClock, as_utc
from transferhub.domain.entities import Payment, Trip
from transferhub.domain.enums import (
    CheckoutOutcome,
    GatewayStatus,
    PaymentMethod,
    PaymentStatus,
)
from transferhub.domain.errors import (
    GatewayError,
    InvalidState,
    PermissionDenied,
    Unavailable,
)
from transferhub.domain.pricing import Extra, Quote
from transferhub.domain.roles import Actor, Capability, require
from transferhub.infrastructure.payment_gateway import (
    GatewayEvent,
    PaymentGateway,
    PaymentIntent,
)
from transferhub.infrastructure.repositories import PaymentRepository, TripRepository
from .retry import RetryPolicy, is_transient

logger = logging.getLogger(__name__)

SUCCEEDED_EVENT = "payment_intent.succeeded"


@dataclass(frozen=True)
class BookingRequest:
    customer_id: str
    pickup_location: str
    dropoff_location: str
    scheduled_at: datetime
    quote: Quote
    vehicle: Optional[str] = None

    @property
    def total(self) -> Decimal:
        return self.quote.total

    def to_metadata(self) -> dict[str, str]:
        return {
            "customer_id": self.customer_id,
            "pickup_location": self.pickup_location,
            "dropoff_location": self.dropoff_location,
            "scheduled_at": self.scheduled_at.isoformat(),
            "vehicle": self.vehicle or "",
            "vehicle_price": str(self.quote.vehicle_price),
            "extras": ",".join(f"{e.code}:{e.price}" for e in self.quote.extras),
        }

    @classmethod
    def from_metadata(cls, metadata: dict[str, str]) -> "BookingRequest":
        try:
            extras = tuple(
                Extra(code, Decimal(price))
                for code, price in (
                    item.rsplit(":", 1) for item in metadata.get("extras", "").split(",") if item
                )
            )
            return cls(
                customer_id=metadata["customer_id"],
                pickup_location=metadata["pickup_location"],
                dropoff_location=metadata["dropoff_location"],
                scheduled_at=as_utc(datetime.fromisoformat(metadata["scheduled_at"])),
                quote=Quote(Decimal(metadata["vehicle_price"]), extras),
                vehicle=metadata.get("vehicle") or None,
            )
        except (KeyError, ValueError, InvalidOperation) as exc:
            raise InvalidState("Payment intent does not describe a booking") from exc


@dataclass(frozen=True)
class CheckoutResult:
    outcome: CheckoutOutcome
    trip: Optional[Trip] = None
    payment: Optional[Payment] = None
    intent_id: Optional[str] = None
    client_secret: Optional[str] = None
    next_action_url: Optional[str] = None
    message: Optional[str] = None


@dataclass
class CardCheckout:
    intent_id: str
    client_secret: str
    amount: Decimal
    currency: str
    metadata: dict[str, str] = field(default_factory=dict)


class CheckoutOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGateway,
        *,
        currency: str = "eur",
        policy: Optional[RetryPolicy] = None,
        clock: Optional[Clock] = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.currency = currency
        self.policy = policy or RetryPolicy()
        self.clock = clock or SystemClock()

    # ── card ──────────────────────────────────────────────────────────

    async def start_card_checkout(self, actor: Actor, booking: BookingRequest) -> CardCheckout:
        self._require_booker(actor, booking)
        metadata = booking.to_metadata()
        intent = await self.policy.run(
            self.gateway.create_intent, booking.total, self.currency, metadata
        )
        logger.info("Created payment intent %s for %s", intent.id, booking.total)
        return CardCheckout(
            intent_id=intent.id,
            client_secret=intent.client_secret,
            amount=booking.total,
            currency=self.currency,
            metadata=metadata,
        )

    async def confirm_card(
        self, actor: Actor, client_secret: str, payment_details: dict[str, Any]
    ) -> CheckoutResult:
        require(actor, Capability.BOOK_TRIP)
        intent = await self.policy.run(self.gateway.confirm, client_secret, payment_details)
        return await self._settle(intent, actor)

    async def complete_from_return(self, actor: Actor, client_secret: str) -> CheckoutResult:
        require(actor, Capability.BOOK_TRIP)
        intent = await self.policy.run(self.gateway.retrieve, client_secret)
        return await self._settle(intent, actor)

    async def handle_event(self, event: GatewayEvent) -> Optional[CheckoutResult]:
        if event.type != SUCCEEDED_EVENT or event.intent is None:
            logger.debug("Ignoring gateway event %s", event.type)
            return None
        try:
            return await self._settle(event.intent, None)
        except (InvalidState, GatewayError) as exc:
            # Events that carry no booking are acknowledged; only transient errors redeliver.
            if is_transient(exc):
                raise
            logger.warning(
                "Gateway event %s for intent %s is not a booking: %s",
                event.type,
                event.intent.id,
                exc,
            )
            return None

    # ── cash ──────────────────────────────────────────────────────────

    async def cash_checkout(self, actor: Actor, booking: BookingRequest) -> CheckoutResult:
        self._require_booker(actor, booking)
        trip, payment = await self.policy.run(
            self._record_booking,
            booking,
            amount=booking.total,
            method=PaymentMethod.CASH,
            status=PaymentStatus.PENDING,
        )
        logger.info("Cash booking %s recorded", trip.id)
        return CheckoutResult(CheckoutOutcome.CONFIRMED, trip=trip, payment=payment)

    # ── internals ─────────────────────────────────────────────────────

    async def _settle(self, intent: PaymentIntent, actor: Optional[Actor]) -> CheckoutResult:
        if intent.status in (GatewayStatus.PROCESSING, GatewayStatus.REQUIRES_ACTION):
            return CheckoutResult(
                CheckoutOutcome.AWAITING_PAYMENT,
                intent_id=intent.id,
                client_secret=intent.client_secret,
                next_action_url=intent.next_action_url,
            )
        if intent.status != GatewayStatus.SUCCEEDED:
            raise GatewayError(
                f"Payment {intent.id} {intent.status.value}", retryable=False
            )

        booking = BookingRequest.from_metadata(intent.metadata)
        if actor is not None and not actor.can(Capability.VIEW_ALL):
            if booking.customer_id != actor.user_id:
                raise PermissionDenied("Payment belongs to another customer")
        if intent.amount != booking.total:
            logger.warning(
                "Intent %s captured %s but quote was %s", intent.id, intent.amount, booking.total
            )

        try:
            trip, payment = await self.policy.run(
                self._record_booking,
                booking,
                amount=intent.amount,
                method=PaymentMethod.CARD,
                status=PaymentStatus.COMPLETED,
                reference=intent.id,
                paid_at=self.clock.now(),
            )
        except (Unavailable, SQLAlchemyError):
            logger.exception(
                "Payment %s captured but booking could not be recorded", intent.id
            )
            return CheckoutResult(
                CheckoutOutcome.CAPTURED_PENDING_FOLLOWUP,
                intent_id=intent.id,
                message="Payment captured; booking pending manual follow-up.",
            )
        logger.info("Card booking %s recorded for intent %s", trip.id, intent.id)
        return CheckoutResult(
            CheckoutOutcome.CONFIRMED, trip=trip, payment=payment, intent_id=intent.id
        )

    async def _record_booking(
        self,
        booking: BookingRequest,
        *,
        amount: Decimal,
        method: PaymentMethod,
        status: PaymentStatus,
        reference: Optional[str] = None,
        paid_at: Optional[datetime] = None,
    ) -> tuple[Trip, Payment]:
        """Write Trip + Payment as one unit; never one without the other."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    if reference is not None:
                        existing = await self._existing(session, reference)
                        if existing is not None:
                            return existing
                    trip = await TripRepository(session).create(
                        Trip(
                            customer_id=booking.customer_id,
                            pickup_location=booking.pickup_location,
                            dropoff_location=booking.dropoff_location,
                            scheduled_at=booking.scheduled_at,
                            estimated_price=booking.total,
                            vehicle=booking.vehicle,
                        )
                    )
                    payment = await PaymentRepository(session).create(
                        Payment(
                            trip_id=trip.id,
                            amount=amount,
                            currency=self.currency,
                            method=method,
                            status=status,
                            gateway_reference=reference,
                            paid_at=paid_at,
                        )
                    )
                return trip, payment
        except IntegrityError:
            if reference is None:
                raise
            # A concurrent confirmation path booked this intent first.
            async with self.session_factory() as session:
                existing = await self._existing(session, reference)
            if existing is None:
                raise
            return existing
        except (OperationalError, InterfaceError) as exc:
            raise Unavailable(f"Ledger store unavailable: {exc}") from exc
        except DBAPIError as exc:
            if exc.connection_invalidated:
                raise Unavailable(f"Ledger store connection lost: {exc}") from exc
            raise

    @staticmethod
    async def _existing(session: AsyncSession, reference: str) -> Optional[tuple[Trip, Payment]]:
        payment = await PaymentRepository(session).get_by_reference(reference)
        if payment is None:
            return None
        trip = await TripRepository(session).get(payment.trip_id)
        return trip, payment

    @staticmethod
    def _require_booker(actor: Actor, booking: BookingRequest) -> None:
        require(actor, Capability.BOOK_TRIP)
        if booking.customer_id != actor.user_id and not actor.can(Capability.VIEW_ALL):
            raise PermissionDenied("Cannot book on behalf of another customer")
