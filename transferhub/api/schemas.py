"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from transferhub.domain.enums import (
    CheckoutOutcome,
    DocType,
    DocumentState,
    InviteStatus,
    PaymentMethod,
    PaymentStatus,
    TripStatus,
    VerificationStatus,
)
from transferhub.domain.entities import Document
from transferhub.domain.roles import Role
from transferhub.domain.verification import document_state


# ── Requests ──────────────────────────────────────────────────────────


class ExtraItem(BaseModel):
    code: str = Field(..., max_length=64)
    price: Decimal = Field(..., ge=0)


class BookingCreateRequest(BaseModel):
    customer_id: Optional[str] = Field(
        None, description="Defaults to the calling user; admins may book for others."
    )
    pickup_location: str = Field(..., min_length=1, max_length=255)
    dropoff_location: str = Field(..., min_length=1, max_length=255)
    scheduled_at: datetime
    vehicle: Optional[str] = Field(None, max_length=64)
    vehicle_price: Decimal = Field(..., ge=0)
    extras: list[ExtraItem] = []


class CardConfirmRequest(BaseModel):
    client_secret: str
    payment_method: Optional[str] = None
    return_url: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class AssignRequest(BaseModel):
    driver_id: int


class StatusOverrideRequest(BaseModel):
    status: TripStatus
    note: Optional[str] = Field(None, max_length=500)


class DeclineRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class AvailabilityRequest(BaseModel):
    is_available: bool
    note: Optional[str] = Field(None, max_length=500)


class LicenseUpdateRequest(BaseModel):
    license_number: Optional[str] = Field(None, max_length=64)


class DocumentUploadRequest(BaseModel):
    doc_type: DocType
    storage_location: str = Field(..., min_length=1, max_length=512)
    name: Optional[str] = Field(None, max_length=255)
    expiry_date: Optional[datetime] = None


class InviteCreateRequest(BaseModel):
    role: Role = Role.PARTNER
    ttl_hours: Optional[int] = Field(72, ge=1, le=24 * 90)


# ── Responses ─────────────────────────────────────────────────────────


class TripResponse(BaseModel):
    id: int
    customer_id: str
    driver_id: Optional[int] = None
    pickup_location: str
    dropoff_location: str
    scheduled_at: datetime
    status: TripStatus
    driver_acknowledged: bool
    estimated_price: Decimal
    vehicle: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DriverResponse(BaseModel):
    id: int
    account_id: str
    verification_status: VerificationStatus
    is_available: bool
    license_number: Optional[str] = None
    decline_reason: Optional[str] = None
    verified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DocumentResponse(BaseModel):
    id: int
    driver_id: int
    doc_type: DocType
    storage_location: str
    name: Optional[str] = None
    verified: bool
    expiry_date: Optional[datetime] = None
    uploaded_at: Optional[datetime] = None
    state: Optional[DocumentState] = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_document(
        cls, document: Document, now: datetime, expiring_soon_days: int
    ) -> "DocumentResponse":
        view = cls.model_validate(document)
        view.state = document_state(document, now, expiring_soon_days)
        return view


class ReadinessResponse(BaseModel):
    ready: bool
    missing: list[DocType] = []

    model_config = {"from_attributes": True}


class PaymentResponse(BaseModel):
    id: int
    trip_id: int
    amount: Decimal
    currency: str
    method: PaymentMethod
    status: PaymentStatus
    gateway_reference: Optional[str] = None
    paid_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CardCheckoutResponse(BaseModel):
    intent_id: str
    client_secret: str
    amount: Decimal
    currency: str

    model_config = {"from_attributes": True}


class CheckoutResponse(BaseModel):
    outcome: CheckoutOutcome
    trip: Optional[TripResponse] = None
    payment: Optional[PaymentResponse] = None
    intent_id: Optional[str] = None
    client_secret: Optional[str] = None
    next_action_url: Optional[str] = None
    message: Optional[str] = None

    model_config = {"from_attributes": True}


class InviteResponse(BaseModel):
    code: str
    role: str
    created_by: str
    status: InviteStatus
    expires_at: Optional[datetime] = None
    used_at: Optional[datetime] = None
    used_by: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ActivityResponse(BaseModel):
    id: int
    actor_id: str
    action: str
    driver_id: Optional[int] = None
    trip_id: Optional[int] = None
    details: dict[str, Any] = {}
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    error: str
    detail: str
