"""Domain enumerations and state-transition rules."""

import enum


class TripStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
TRIP_TRANSITIONS: dict[TripStatus, set[TripStatus]] = {
    TripStatus.PENDING: {TripStatus.ACCEPTED, TripStatus.CANCELLED},
    TripStatus.ACCEPTED: {TripStatus.IN_PROGRESS, TripStatus.CANCELLED},
    TripStatus.IN_PROGRESS: {TripStatus.COMPLETED, TripStatus.CANCELLED},
    TripStatus.COMPLETED: set(),
    TripStatus.CANCELLED: set(),
}

TERMINAL_TRIP_STATUSES = frozenset({TripStatus.COMPLETED, TripStatus.CANCELLED})

# A trip in one of these states may reference a driver
DRIVER_BEARING_STATUSES = frozenset(
    {TripStatus.PENDING, TripStatus.ACCEPTED, TripStatus.IN_PROGRESS, TripStatus.COMPLETED}
)


class VerificationStatus(str, enum.Enum):
    UNVERIFIED = "unverified"
    PENDING = "pending"
    VERIFIED = "verified"
    DECLINED = "declined"


DRIVER_TRANSITIONS: dict[VerificationStatus, set[VerificationStatus]] = {
    VerificationStatus.UNVERIFIED: {VerificationStatus.PENDING},
    VerificationStatus.PENDING: {VerificationStatus.VERIFIED, VerificationStatus.DECLINED},
    VerificationStatus.VERIFIED: {VerificationStatus.PENDING, VerificationStatus.DECLINED},
    VerificationStatus.DECLINED: {VerificationStatus.PENDING, VerificationStatus.VERIFIED},
}


class DocType(str, enum.Enum):
    LICENSE = "license"
    INSURANCE = "insurance"
    REGISTRATION = "registration"
    OTHER = "other"


REQUIRED_DOC_TYPES: tuple[DocType, ...] = (
    DocType.LICENSE,
    DocType.INSURANCE,
    DocType.REGISTRATION,
)


class DocumentState(str, enum.Enum):
    PENDING_VERIFICATION = "pending_verification"
    EXPIRED = "expired"
    EXPIRING_SOON = "expiring_soon"
    VALID = "valid"


class PaymentMethod(str, enum.Enum):
    CARD = "card"
    CASH = "cash"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class GatewayStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    PROCESSING = "processing"
    REQUIRES_ACTION = "requires_action"
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    FAILED = "failed"


class InviteStatus(str, enum.Enum):
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"


class CheckoutOutcome(str, enum.Enum):
    CONFIRMED = "confirmed"
    AWAITING_PAYMENT = "awaiting_payment"
    CAPTURED_PENDING_FOLLOWUP = "captured_pending_followup"
