"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``drivers``          -- partner operational profiles
* ``driver_documents`` -- one live upload per (driver, doc_type)
* ``trips``            -- transfer bookings and their fulfilment
* ``payments``         -- exactly one payment attempt per trip
* ``invite_links``     -- single-use signup credentials
* ``activity_logs``    -- admin decisions on drivers and trips

Constraints
-----------
* ``uq_driver_documents_type`` makes re-upload a replacement, never a
  second live row.
* ``payments.trip_id`` and ``payments.gateway_reference`` are unique, so a
  captured intent can be booked at most once however many callers race.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)

from .database import Base
from transferhub.domain.enums import (
    DocType,
    InviteStatus,
    PaymentMethod,
    PaymentStatus,
    TripStatus,
    VerificationStatus,
)


def _enum(enum_cls, name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda e: [m.value for m in e],
        validate_strings=True,
    )


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(String(64), unique=True, nullable=False)
    verification_status = Column(
        _enum(VerificationStatus, "verification_status"),
        default=VerificationStatus.UNVERIFIED,
        nullable=False,
    )
    is_available = Column(Boolean, default=False, nullable=False)
    license_number = Column(String(64), nullable=True)
    decline_reason = Column(Text, nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_drivers_status", "verification_status"),
        Index("idx_drivers_available", "is_available"),
    )


class DocumentModel(Base):
    __tablename__ = "driver_documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False)
    doc_type = Column(_enum(DocType, "doc_type"), nullable=False)
    storage_location = Column(String(512), nullable=False)
    name = Column(String(255), nullable=True)
    verified = Column(Boolean, default=False, nullable=False)
    expiry_date = Column(DateTime(timezone=True), nullable=True)
    uploaded_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("driver_id", "doc_type", name="uq_driver_documents_type"),
        Index("idx_driver_documents_driver", "driver_id"),
    )


class TripModel(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(String(64), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)
    pickup_location = Column(String(255), nullable=False)
    dropoff_location = Column(String(255), nullable=False)
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(
        _enum(TripStatus, "trip_status"), default=TripStatus.PENDING, nullable=False
    )
    driver_acknowledged = Column(Boolean, default=False, nullable=False)
    estimated_price = Column(Numeric(10, 2), nullable=False)
    vehicle = Column(String(64), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_trips_status", "status"),
        Index("idx_trips_driver", "driver_id"),
        Index("idx_trips_customer", "customer_id"),
        Index("idx_trips_scheduled", "scheduled_at"),
    )


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), unique=True, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="eur")
    method = Column(_enum(PaymentMethod, "payment_method"), nullable=False)
    status = Column(
        _enum(PaymentStatus, "payment_status"),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    gateway_reference = Column(String(255), unique=True, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class InviteLinkModel(Base):
    __tablename__ = "invite_links"

    code = Column(String(64), primary_key=True)
    role = Column(String(20), nullable=False)
    created_by = Column(String(64), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    used_at = Column(DateTime(timezone=True), nullable=True)
    used_by = Column(String(64), nullable=True)
    status = Column(
        _enum(InviteStatus, "invite_status"),
        default=InviteStatus.ACTIVE,
        nullable=False,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_invite_links_status", "status"),)


class ActivityLogModel(Base):
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_id = Column(String(64), nullable=False)
    action = Column(String(64), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=True)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_activity_logs_driver", "driver_id"),
        Index("idx_activity_logs_trip", "trip_id"),
    )
