"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Trip``: enforces valid lifecycle transitions
  (pending -> accepted -> in_progress -> completed | cancelled) and keeps
  the driver / timestamp invariants in step with ``status``.
- **State Pattern** on ``Driver``: verification status plus the
  availability flag, which may only be raised while verified.
- ``InviteLink`` owns its single-use, time-bounded credential rules.

Entities never touch the store.  Services snapshot ``guard()`` before
mutating and hand it to the repository as the write precondition.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from .clock import as_utc
from .enums import (
    DRIVER_BEARING_STATUSES,
    DRIVER_TRANSITIONS,
    TERMINAL_TRIP_STATUSES,
    TRIP_TRANSITIONS,
    DocType,
    InviteStatus,
    PaymentMethod,
    PaymentStatus,
    TripStatus,
    VerificationStatus,
)
from .errors import Conflict, InvalidState, NotVerified

DEFAULT_DECLINE_REASON = "Your verification was declined. Please contact support."


# ── Trip ──────────────────────────────────────────────────────────────


@dataclass
class Trip:
    id: Optional[int] = None
    customer_id: str = ""
    driver_id: Optional[int] = None
    pickup_location: str = ""
    dropoff_location: str = ""
    scheduled_at: Optional[datetime] = None
    status: TripStatus = TripStatus.PENDING
    driver_acknowledged: bool = False
    estimated_price: Decimal = Decimal("0.00")
    vehicle: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def guard(self) -> dict[str, Any]:
        """Column values that must still hold at write time."""
        return {"status": self.status, "driver_id": self.driver_id}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TRIP_STATUSES

    def transition_to(self, new_status: TripStatus, now: datetime) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        allowed = TRIP_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidState(
                f"Cannot transition trip from {self.status.value} to {new_status.value}"
            )
        self.status = new_status
        self._sync_lifecycle(now)

    def assign_driver(self, driver_id: int) -> None:
        # Assignment never implies acceptance; status stays pending.
        if self.status != TripStatus.PENDING:
            raise InvalidState(
                f"Cannot assign a driver to a trip in status {self.status.value}"
            )
        if self.driver_id is not None:
            raise Conflict(f"Trip {self.id} already has driver {self.driver_id}")
        self.driver_id = driver_id
        self.driver_acknowledged = False

    def reassign_driver(self, driver_id: int) -> None:
        if self.status not in (TripStatus.PENDING, TripStatus.ACCEPTED):
            raise InvalidState(
                f"Cannot reassign a trip in status {self.status.value}"
            )
        if self.driver_id == driver_id:
            raise InvalidState(f"Driver {driver_id} is already assigned")
        self.driver_id = driver_id
        self.driver_acknowledged = False
        self.status = TripStatus.PENDING

    def acknowledge(self) -> None:
        self._require_pending_with_driver("acknowledge")
        self.driver_acknowledged = True

    def accept(self, now: datetime) -> None:
        self._require_pending_with_driver("accept")
        self.driver_acknowledged = True
        self.transition_to(TripStatus.ACCEPTED, now)

    def start(self, now: datetime) -> None:
        self.transition_to(TripStatus.IN_PROGRESS, now)

    def complete(self, now: datetime) -> None:
        self.transition_to(TripStatus.COMPLETED, now)

    def cancel(self, now: datetime) -> bool:
        """Cancel the trip.  Returns False when it was already cancelled."""
        if self.status == TripStatus.CANCELLED:
            return False
        self.transition_to(TripStatus.CANCELLED, now)
        return True

    def override_status(self, new_status: TripStatus, now: datetime) -> None:
        """Admin override: any target except leaving a terminal state."""
        if self.is_terminal and new_status != self.status:
            raise InvalidState(
                f"Trip is {self.status.value}; terminal states cannot be left"
            )
        self.status = new_status
        self._sync_lifecycle(now)

    def _require_pending_with_driver(self, action: str) -> None:
        if self.status != TripStatus.PENDING:
            raise InvalidState(
                f"Cannot {action} a trip in status {self.status.value}"
            )
        if self.driver_id is None:
            raise InvalidState(f"Cannot {action} a trip with no assigned driver")

    def _sync_lifecycle(self, now: datetime) -> None:
        if self.status not in DRIVER_BEARING_STATUSES:
            self.driver_id = None
            self.driver_acknowledged = False
        if self.status in (TripStatus.IN_PROGRESS, TripStatus.COMPLETED):
            self.started_at = self.started_at or now
        else:
            self.started_at = None
        if self.status == TripStatus.COMPLETED:
            self.completed_at = self.completed_at or now
        else:
            self.completed_at = None


# ── Driver ────────────────────────────────────────────────────────────


@dataclass
class Driver:
    id: Optional[int] = None
    account_id: str = ""
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    is_available: bool = False
    license_number: Optional[str] = None
    decline_reason: Optional[str] = None
    verified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def guard(self) -> dict[str, Any]:
        return {
            "verification_status": self.verification_status,
            "is_available": self.is_available,
        }

    @property
    def is_verified(self) -> bool:
        return self.verification_status == VerificationStatus.VERIFIED

    def transition_to(self, new_status: VerificationStatus) -> None:
        allowed = DRIVER_TRANSITIONS.get(self.verification_status, set())
        if new_status not in allowed:
            raise InvalidState(
                f"Cannot move driver from {self.verification_status.value} "
                f"to {new_status.value}"
            )
        self.verification_status = new_status
        if new_status != VerificationStatus.VERIFIED:
            self.is_available = False

    def submit_for_review(self) -> bool:
        """Returns False when the driver is already awaiting review."""
        if self.verification_status == VerificationStatus.PENDING:
            return False
        if self.verification_status == VerificationStatus.VERIFIED:
            raise InvalidState("Driver is already verified")
        self.transition_to(VerificationStatus.PENDING)
        return True

    def approve(self, now: datetime) -> None:
        self.transition_to(VerificationStatus.VERIFIED)
        self.verified_at = now
        self.decline_reason = None

    def decline(self, reason: Optional[str]) -> None:
        if self.verification_status not in (
            VerificationStatus.PENDING,
            VerificationStatus.VERIFIED,
        ):
            raise InvalidState(
                f"Cannot decline a driver in status {self.verification_status.value}"
            )
        self.transition_to(VerificationStatus.DECLINED)
        self.decline_reason = (reason or "").strip() or DEFAULT_DECLINE_REASON

    def set_availability(self, desired: bool) -> None:
        if not self.is_verified:
            raise NotVerified(
                f"Driver {self.id} is {self.verification_status.value}; "
                "only verified drivers can change availability"
            )
        self.is_available = desired

    def on_document_changed(self) -> bool:
        """Demote a verified driver for re-verification.  True if demoted."""
        if not self.is_verified:
            return False
        self.transition_to(VerificationStatus.PENDING)
        self.verified_at = None
        return True


# ── Document / Payment / InviteLink ───────────────────────────────────


@dataclass
class Document:
    id: Optional[int] = None
    driver_id: int = 0
    doc_type: DocType = DocType.OTHER
    storage_location: str = ""
    name: Optional[str] = None
    verified: bool = False
    expiry_date: Optional[datetime] = None
    uploaded_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        expiry = as_utc(self.expiry_date)
        return expiry is not None and expiry <= now


@dataclass
class Payment:
    id: Optional[int] = None
    trip_id: int = 0
    amount: Decimal = Decimal("0.00")
    currency: str = "eur"
    method: PaymentMethod = PaymentMethod.CARD
    status: PaymentStatus = PaymentStatus.PENDING
    gateway_reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass
class InviteLink:
    code: str = ""
    role: str = "partner"
    created_by: str = ""
    expires_at: Optional[datetime] = None
    used_at: Optional[datetime] = None
    used_by: Optional[str] = None
    status: InviteStatus = InviteStatus.ACTIVE
    created_at: Optional[datetime] = None

    def is_stale(self, now: datetime) -> bool:
        """Active but past its expiry."""
        expires = as_utc(self.expires_at)
        return (
            self.status == InviteStatus.ACTIVE
            and expires is not None
            and expires < now
        )

    def expire(self) -> None:
        if self.status != InviteStatus.ACTIVE:
            raise InvalidState(f"Invite {self.code} is already {self.status.value}")
        self.status = InviteStatus.EXPIRED

    def redeem(self, user_id: str, now: datetime) -> None:
        if self.is_stale(now):
            self.expire()
        if self.status != InviteStatus.ACTIVE:
            raise InvalidState(f"Invite {self.code} is {self.status.value}")
        self.status = InviteStatus.USED
        self.used_at = now
        self.used_by = user_id


@dataclass
class ActivityEntry:
    id: Optional[int] = None
    actor_id: str = ""
    action: str = ""
    driver_id: Optional[int] = None
    trip_id: Optional[int] = None
    details: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
