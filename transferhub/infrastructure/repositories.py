"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work), speaks in
domain entities, and exposes domain-relevant queries only.

Every state change goes through ``save_if``: a single
``UPDATE ... WHERE id = :id AND <expected columns>`` whose row count tells
the caller whether its precondition still held.  There is no
read-then-write window for a concurrent writer to slip into.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .change_feed import record_change
from .models import (
    ActivityLogModel,
    DocumentModel,
    DriverModel,
    InviteLinkModel,
    PaymentModel,
    TripModel,
)
from transferhub.domain.clock import as_utc
from transferhub.domain.entities import (
    ActivityEntry,
    Document,
    Driver,
    InviteLink,
    Payment,
    Trip,
)
from transferhub.domain.enums import (
    DocType,
    InviteStatus,
    TripStatus,
    VerificationStatus,
)

ACTIVE_TRIP_STATUSES = (TripStatus.PENDING, TripStatus.ACCEPTED, TripStatus.IN_PROGRESS)


async def _conditional_update(
    session: AsyncSession,
    model,
    key_column,
    key,
    expected: dict[str, Any],
    values: dict[str, Any],
) -> bool:
    conditions = [key_column == key]
    for column, value in expected.items():
        col = getattr(model, column)
        conditions.append(col.is_(None) if value is None else col == value)
    result = await session.execute(
        update(model)
        .where(*conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# ── Trips ─────────────────────────────────────────────────────────────


def _trip(row: TripModel) -> Trip:
    return Trip(
        id=row.id,
        customer_id=row.customer_id,
        driver_id=row.driver_id,
        pickup_location=row.pickup_location,
        dropoff_location=row.dropoff_location,
        scheduled_at=as_utc(row.scheduled_at),
        status=TripStatus(row.status),
        driver_acknowledged=bool(row.driver_acknowledged),
        estimated_price=row.estimated_price,
        vehicle=row.vehicle,
        started_at=as_utc(row.started_at),
        completed_at=as_utc(row.completed_at),
        created_at=as_utc(row.created_at),
    )


class TripRepository:
    MUTABLE = ("status", "driver_id", "driver_acknowledged", "started_at", "completed_at")

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, trip: Trip) -> Trip:
        row = TripModel(
            customer_id=trip.customer_id,
            driver_id=trip.driver_id,
            pickup_location=trip.pickup_location,
            dropoff_location=trip.dropoff_location,
            scheduled_at=trip.scheduled_at,
            status=trip.status,
            driver_acknowledged=trip.driver_acknowledged,
            estimated_price=trip.estimated_price,
            vehicle=trip.vehicle,
        )
        self.session.add(row)
        await self.session.flush()
        await self.session.refresh(row)
        return _trip(row)

    async def get(self, trip_id: int) -> Optional[Trip]:
        row = await self.session.get(TripModel, trip_id, populate_existing=True)
        return _trip(row) if row else None

    async def save_if(self, trip: Trip, expected: dict[str, Any]) -> bool:
        """Persist *trip*'s mutable columns only if *expected* still holds."""
        ok = await _conditional_update(
            self.session,
            TripModel,
            TripModel.id,
            trip.id,
            expected,
            {name: getattr(trip, name) for name in self.MUTABLE},
        )
        if ok:
            record_change(self.session, "trips", id=trip.id)
            record_change(self.session, "trips", driver_id=trip.driver_id)
            if expected.get("driver_id") != trip.driver_id:
                record_change(self.session, "trips", driver_id=expected.get("driver_id"))
        return ok

    async def list(
        self,
        *,
        status: Optional[TripStatus] = None,
        driver_id: Optional[int] = None,
        customer_id: Optional[str] = None,
        unassigned: bool = False,
        scheduled_before: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Trip]:
        query = select(TripModel).execution_options(populate_existing=True)
        if status is not None:
            query = query.where(TripModel.status == status)
        if driver_id is not None:
            query = query.where(TripModel.driver_id == driver_id)
        if customer_id is not None:
            query = query.where(TripModel.customer_id == customer_id)
        if unassigned:
            query = query.where(TripModel.driver_id.is_(None))
        if scheduled_before is not None:
            query = query.where(TripModel.scheduled_at <= scheduled_before)
        query = query.order_by(TripModel.scheduled_at, TripModel.id).offset(offset).limit(limit)
        result = await self.session.execute(query)
        return [_trip(r) for r in result.scalars().all()]

    async def count_active_by_driver(self, driver_ids: Iterable[int]) -> dict[int, int]:
        ids = list(driver_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(TripModel.driver_id, func.count())
            .where(
                TripModel.driver_id.in_(ids),
                TripModel.status.in_(ACTIVE_TRIP_STATUSES),
            )
            .group_by(TripModel.driver_id)
        )
        counts = {driver_id: 0 for driver_id in ids}
        counts.update({driver_id: n for driver_id, n in result.all()})
        return counts


# ── Drivers ───────────────────────────────────────────────────────────


def _driver(row: DriverModel) -> Driver:
    return Driver(
        id=row.id,
        account_id=row.account_id,
        verification_status=VerificationStatus(row.verification_status),
        is_available=bool(row.is_available),
        license_number=row.license_number,
        decline_reason=row.decline_reason,
        verified_at=as_utc(row.verified_at),
        created_at=as_utc(row.created_at),
    )


class DriverRepository:
    MUTABLE = ("verification_status", "is_available", "decline_reason", "verified_at")

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, driver: Driver) -> Driver:
        row = DriverModel(
            account_id=driver.account_id,
            verification_status=driver.verification_status,
            is_available=driver.is_available,
            license_number=driver.license_number,
        )
        self.session.add(row)
        await self.session.flush()
        await self.session.refresh(row)
        return _driver(row)

    async def get(self, driver_id: int) -> Optional[Driver]:
        row = await self.session.get(DriverModel, driver_id, populate_existing=True)
        return _driver(row) if row else None

    async def get_by_account(self, account_id: str) -> Optional[Driver]:
        result = await self.session.execute(
            select(DriverModel)
            .where(DriverModel.account_id == account_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _driver(row) if row else None

    async def save_if(self, driver: Driver, expected: dict[str, Any]) -> bool:
        return await _conditional_update(
            self.session,
            DriverModel,
            DriverModel.id,
            driver.id,
            expected,
            {name: getattr(driver, name) for name in self.MUTABLE},
        )

    async def update_license(self, driver_id: int, license_number: Optional[str]) -> None:
        await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(license_number=license_number)
            .execution_options(synchronize_session=False)
        )

    async def list(
        self,
        *,
        status: Optional[VerificationStatus] = None,
        available: Optional[bool] = None,
    ) -> list[Driver]:
        query = select(DriverModel).execution_options(populate_existing=True)
        if status is not None:
            query = query.where(DriverModel.verification_status == status)
        if available is not None:
            query = query.where(DriverModel.is_available.is_(available))
        result = await self.session.execute(query.order_by(DriverModel.id))
        return [_driver(r) for r in result.scalars().all()]


# ── Documents ─────────────────────────────────────────────────────────


def _document(row: DocumentModel) -> Document:
    return Document(
        id=row.id,
        driver_id=row.driver_id,
        doc_type=DocType(row.doc_type),
        storage_location=row.storage_location,
        name=row.name,
        verified=bool(row.verified),
        expiry_date=as_utc(row.expiry_date),
        uploaded_at=as_utc(row.uploaded_at),
    )


class DocumentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_for_driver(self, driver_id: int) -> list[Document]:
        result = await self.session.execute(
            select(DocumentModel)
            .where(DocumentModel.driver_id == driver_id)
            .order_by(DocumentModel.uploaded_at.desc())
            .execution_options(populate_existing=True)
        )
        return [_document(r) for r in result.scalars().all()]

    async def replace(self, document: Document) -> Document:
        """Supersede any live document of the same type with *document*."""
        await self.session.execute(
            delete(DocumentModel).where(
                DocumentModel.driver_id == document.driver_id,
                DocumentModel.doc_type == document.doc_type,
            )
        )
        row = DocumentModel(
            driver_id=document.driver_id,
            doc_type=document.doc_type,
            storage_location=document.storage_location,
            name=document.name,
            verified=False,
            expiry_date=document.expiry_date,
            uploaded_at=document.uploaded_at,
        )
        self.session.add(row)
        await self.session.flush()
        return _document(row)

    async def mark_verified(self, driver_id: int) -> None:
        await self.session.execute(
            update(DocumentModel)
            .where(DocumentModel.driver_id == driver_id)
            .values(verified=True)
            .execution_options(synchronize_session=False)
        )


# ── Payments ──────────────────────────────────────────────────────────


def _payment(row: PaymentModel) -> Payment:
    return Payment(
        id=row.id,
        trip_id=row.trip_id,
        amount=row.amount,
        currency=row.currency,
        method=row.method,
        status=row.status,
        gateway_reference=row.gateway_reference,
        paid_at=as_utc(row.paid_at),
        created_at=as_utc(row.created_at),
    )


class PaymentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, payment: Payment) -> Payment:
        row = PaymentModel(
            trip_id=payment.trip_id,
            amount=payment.amount,
            currency=payment.currency,
            method=payment.method,
            status=payment.status,
            gateway_reference=payment.gateway_reference,
            paid_at=payment.paid_at,
        )
        self.session.add(row)
        await self.session.flush()
        await self.session.refresh(row)
        return _payment(row)

    async def get_for_trip(self, trip_id: int) -> Optional[Payment]:
        result = await self.session.execute(
            select(PaymentModel).where(PaymentModel.trip_id == trip_id)
        )
        row = result.scalar_one_or_none()
        return _payment(row) if row else None

    async def get_by_reference(self, reference: str) -> Optional[Payment]:
        result = await self.session.execute(
            select(PaymentModel).where(PaymentModel.gateway_reference == reference)
        )
        row = result.scalar_one_or_none()
        return _payment(row) if row else None


# ── Invite links ──────────────────────────────────────────────────────


def _invite(row: InviteLinkModel) -> InviteLink:
    return InviteLink(
        code=row.code,
        role=row.role,
        created_by=row.created_by,
        expires_at=as_utc(row.expires_at),
        used_at=as_utc(row.used_at),
        used_by=row.used_by,
        status=InviteStatus(row.status),
        created_at=as_utc(row.created_at),
    )


class InviteLinkRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, invite: InviteLink) -> InviteLink:
        row = InviteLinkModel(
            code=invite.code,
            role=invite.role,
            created_by=invite.created_by,
            expires_at=invite.expires_at,
            status=invite.status,
        )
        self.session.add(row)
        await self.session.flush()
        await self.session.refresh(row)
        return _invite(row)

    async def get(self, code: str) -> Optional[InviteLink]:
        row = await self.session.get(InviteLinkModel, code, populate_existing=True)
        return _invite(row) if row else None

    async def list(self, *, status: Optional[InviteStatus] = None) -> list[InviteLink]:
        query = select(InviteLinkModel).execution_options(populate_existing=True)
        if status is not None:
            query = query.where(InviteLinkModel.status == status)
        result = await self.session.execute(
            query.order_by(InviteLinkModel.created_at.desc(), InviteLinkModel.code)
        )
        return [_invite(r) for r in result.scalars().all()]

    async def save_if(self, invite: InviteLink, expected_status: InviteStatus) -> bool:
        return await _conditional_update(
            self.session,
            InviteLinkModel,
            InviteLinkModel.code,
            invite.code,
            {"status": expected_status},
            {
                "status": invite.status,
                "used_at": invite.used_at,
                "used_by": invite.used_by,
            },
        )

    async def expire_many(self, codes: list[str], now: datetime) -> int:
        """Batched ``active -> expired`` for links already past expiry."""
        if not codes:
            return 0
        result = await self.session.execute(
            update(InviteLinkModel)
            .where(
                InviteLinkModel.code.in_(codes),
                InviteLinkModel.status == InviteStatus.ACTIVE,
                InviteLinkModel.expires_at.is_not(None),
                InviteLinkModel.expires_at < now,
            )
            .values(status=InviteStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


# ── Activity log ──────────────────────────────────────────────────────


class ActivityLogRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, entry: ActivityEntry) -> None:
        self.session.add(
            ActivityLogModel(
                actor_id=entry.actor_id,
                action=entry.action,
                driver_id=entry.driver_id,
                trip_id=entry.trip_id,
                details=entry.details,
            )
        )
        await self.session.flush()

    async def list_for_driver(self, driver_id: int, limit: int = 10) -> list[ActivityEntry]:
        result = await self.session.execute(
            select(ActivityLogModel)
            .where(ActivityLogModel.driver_id == driver_id)
            .order_by(ActivityLogModel.created_at.desc(), ActivityLogModel.id.desc())
            .limit(limit)
        )
        return [
            ActivityEntry(
                id=r.id,
                actor_id=r.actor_id,
                action=r.action,
                driver_id=r.driver_id,
                trip_id=r.trip_id,
                details=r.details or {},
                created_at=as_utc(r.created_at),
            )
            for r in result.scalars().all()
        ]
