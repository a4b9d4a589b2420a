"""
Checkout endpoints
==================

POST /api/v1/checkout/card          -- create a card payment intent for a quote
POST /api/v1/checkout/card/confirm  -- confirm the intent with payment details
GET  /api/v1/checkout/card/return   -- landing point after a 3-D Secure redirect
POST /api/v1/checkout/cash          -- book with payment due on the day
POST /api/v1/checkout/webhook       -- gateway event callback (signed)
"""

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from transferhub.api.dependencies import (
    get_actor,
    get_clock,
    get_gateway,
    get_session_factory,
)
from transferhub.api.middleware import DEFAULT_RATE, limiter
from transferhub.api.schemas import (
    BookingCreateRequest,
    CardCheckoutResponse,
    CardConfirmRequest,
    CheckoutResponse,
)
from transferhub.config import settings
from transferhub.domain.clock import Clock, as_utc
from transferhub.domain.pricing import Extra, Quote
from transferhub.domain.roles import Actor
from transferhub.engine.checkout import BookingRequest, CheckoutOrchestrator
from transferhub.engine.retry import RetryPolicy
from transferhub.infrastructure.payment_gateway import PaymentGateway

router = APIRouter(prefix="/checkout", tags=["checkout"])


def get_orchestrator(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    gateway: PaymentGateway = Depends(get_gateway),
    clock: Clock = Depends(get_clock),
) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(
        factory,
        gateway,
        currency=settings.currency,
        policy=RetryPolicy.from_settings(settings),
        clock=clock,
    )


def _booking(body: BookingCreateRequest, actor: Actor) -> BookingRequest:
    return BookingRequest(
        customer_id=body.customer_id or actor.user_id,
        pickup_location=body.pickup_location,
        dropoff_location=body.dropoff_location,
        scheduled_at=as_utc(body.scheduled_at),
        quote=Quote(
            body.vehicle_price,
            tuple(Extra(e.code, e.price) for e in body.extras),
        ),
        vehicle=body.vehicle,
    )


@router.post(
    "/card",
    status_code=201,
    response_model=CardCheckoutResponse,
    summary="Start a card checkout",
)
@limiter.limit(DEFAULT_RATE)
async def start_card_checkout(
    request: Request,
    body: BookingCreateRequest,
    actor: Actor = Depends(get_actor),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.start_card_checkout(actor, _booking(body, actor))


@router.post(
    "/card/confirm",
    response_model=CheckoutResponse,
    summary="Confirm a card payment",
    description=(
        "Returns ``confirmed`` with the booked trip, or ``awaiting_payment`` "
        "with a redirect URL when the bank asks for 3-D Secure."
    ),
)
@limiter.limit(DEFAULT_RATE)
async def confirm_card(
    request: Request,
    body: CardConfirmRequest,
    actor: Actor = Depends(get_actor),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    details = body.model_dump(exclude={"client_secret"}, exclude_none=True)
    return await orchestrator.confirm_card(actor, body.client_secret, details)


@router.get(
    "/card/return",
    response_model=CheckoutResponse,
    summary="Complete a checkout after a payment redirect",
)
@limiter.limit(DEFAULT_RATE)
async def complete_from_return(
    request: Request,
    payment_intent_client_secret: str,
    actor: Actor = Depends(get_actor),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.complete_from_return(actor, payment_intent_client_secret)


@router.post(
    "/cash",
    status_code=201,
    response_model=CheckoutResponse,
    summary="Book with cash payment",
)
@limiter.limit(DEFAULT_RATE)
async def cash_checkout(
    request: Request,
    body: BookingCreateRequest,
    actor: Actor = Depends(get_actor),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.cash_checkout(actor, _booking(body, actor))


@router.post("/webhook", summary="Payment gateway events")
async def gateway_webhook(
    request: Request,
    stripe_signature: str = Header(""),
    gateway: PaymentGateway = Depends(get_gateway),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    event = gateway.parse_event(await request.body(), stripe_signature)
    result = await orchestrator.handle_event(event)
    return {
        "received": True,
        "outcome": result.outcome.value if result else None,
    }
