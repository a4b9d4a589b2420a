"""
Payment Gateway port and its Stripe adapter.

The port exposes exactly what checkout needs:

* ``create_intent(amount, currency, metadata)``
* ``confirm(client_secret, payment_details)``
* ``retrieve(client_secret)`` -- terminal status for return-redirect flows
* ``parse_event(payload, signature)`` -- verified webhook events

The Stripe SDK is synchronous, so every call runs in a worker thread and
is bounded by ``timeout``.  Transport failures, rate limits and 5xx
responses surface as retryable ``GatewayError``; card declines and bad
requests are terminal.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

import stripe

from transferhub.domain.enums import GatewayStatus
from transferhub.domain.errors import GatewayError
from transferhub.domain.pricing import to_minor_units

logger = logging.getLogger(__name__)

_STRIPE_STATUS = {
    "succeeded": GatewayStatus.SUCCEEDED,
    "processing": GatewayStatus.PROCESSING,
    "requires_capture": GatewayStatus.PROCESSING,
    "requires_action": GatewayStatus.REQUIRES_ACTION,
    "requires_confirmation": GatewayStatus.REQUIRES_ACTION,
    "requires_payment_method": GatewayStatus.REQUIRES_PAYMENT_METHOD,
    "canceled": GatewayStatus.FAILED,
}


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    client_secret: str
    status: GatewayStatus
    amount_minor: int
    currency: str
    metadata: dict[str, str] = field(default_factory=dict)
    next_action_url: Optional[str] = None

    @property
    def amount(self) -> Decimal:
        return (Decimal(self.amount_minor) / 100).quantize(Decimal("0.01"))


@dataclass(frozen=True)
class GatewayEvent:
    type: str
    intent: Optional[PaymentIntent]


class PaymentGateway(ABC):
    @abstractmethod
    async def create_intent(
        self, amount: Decimal, currency: str, metadata: dict[str, str]
    ) -> PaymentIntent: ...

    @abstractmethod
    async def confirm(
        self, client_secret: str, payment_details: dict[str, Any]
    ) -> PaymentIntent: ...

    @abstractmethod
    async def retrieve(self, client_secret: str) -> PaymentIntent: ...

    @abstractmethod
    def parse_event(self, payload: bytes, signature: str) -> GatewayEvent: ...


def intent_id_from_secret(client_secret: str) -> str:
    intent_id, sep, _ = client_secret.partition("_secret_")
    if not sep or not intent_id:
        raise GatewayError("Malformed client secret", retryable=False)
    return intent_id


class StripeGateway(PaymentGateway):
    def __init__(
        self,
        api_key: str,
        *,
        webhook_secret: str = "",
        return_url: Optional[str] = None,
        timeout: float = 20.0,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.return_url = return_url
        self.timeout = timeout

    async def create_intent(
        self, amount: Decimal, currency: str, metadata: dict[str, str]
    ) -> PaymentIntent:
        intent = await self._call(
            stripe.PaymentIntent.create,
            amount=to_minor_units(amount),
            currency=currency,
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
        )
        return self._to_intent(intent)

    async def confirm(
        self, client_secret: str, payment_details: dict[str, Any]
    ) -> PaymentIntent:
        params: dict[str, Any] = {}
        if payment_details.get("payment_method"):
            params["payment_method"] = payment_details["payment_method"]
        return_url = payment_details.get("return_url") or self.return_url
        if return_url:
            params["return_url"] = return_url
        intent = await self._call(
            stripe.PaymentIntent.confirm, intent_id_from_secret(client_secret), **params
        )
        return self._to_intent(intent)

    async def retrieve(self, client_secret: str) -> PaymentIntent:
        intent = await self._call(
            stripe.PaymentIntent.retrieve, intent_id_from_secret(client_secret)
        )
        if intent["client_secret"] != client_secret:
            raise GatewayError("Client secret does not match intent", retryable=False)
        return self._to_intent(intent)

    def parse_event(self, payload: bytes, signature: str) -> GatewayEvent:
        try:
            event = stripe.Webhook.construct_event(
                payload, signature, self.webhook_secret
            )
        except (ValueError, stripe.SignatureVerificationError) as exc:
            raise GatewayError(f"Rejected webhook: {exc}", retryable=False) from exc
        obj = event["data"]["object"]
        intent = None
        if obj.get("object") == "payment_intent":
            intent = self._to_intent(obj)
        return GatewayEvent(type=event["type"], intent=intent)

    # ── internals ─────────────────────────────────────────────────────

    async def _call(self, fn, *args, **kwargs):
        kwargs.setdefault("api_key", self.api_key)
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args, **kwargs), timeout=self.timeout
            )
        except asyncio.TimeoutError as exc:
            raise GatewayError("Payment gateway timed out", retryable=True) from exc
        except stripe.CardError as exc:
            raise GatewayError(exc.user_message or "Card declined", retryable=False) from exc
        except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
            raise GatewayError(str(exc), retryable=True) from exc
        except stripe.APIError as exc:
            raise GatewayError(str(exc), retryable=True) from exc
        except stripe.StripeError as exc:
            logger.warning("Stripe rejected request: %s", exc)
            raise GatewayError(str(exc), retryable=False) from exc

    @staticmethod
    def _to_intent(obj) -> PaymentIntent:
        metadata = obj["metadata"] or {}
        next_action = obj.get("next_action") or {}
        redirect = next_action.get("redirect_to_url") or {}
        return PaymentIntent(
            id=obj["id"],
            client_secret=obj["client_secret"],
            status=_STRIPE_STATUS.get(obj["status"], GatewayStatus.FAILED),
            amount_minor=int(obj["amount"]),
            currency=obj["currency"],
            metadata={k: str(metadata[k]) for k in metadata.keys()},
            next_action_url=redirect.get("url"),
        )
