"""
Driver State Machine
====================

Verification status and availability of a partner, independent of any
single trip:

    unverified --submit--> pending --approve--> verified
                              ^  \\                 |
                  resubmit    |   decline           | documents change
                              |     v               v
                           declined <--decline-- (pending again)

* ``is_available`` may only be true while ``verified``; leaving
  ``verified`` for any reason forces it false.
* A document upload replaces the prior upload of that type and demotes a
  verified driver back to ``pending``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from transferhub.domain.clock import Clock, SystemClock
from transferhub.domain.entities import ActivityEntry, Document, Driver
from transferhub.domain.enums import DocType, VerificationStatus
from transferhub.domain.errors import Conflict, DocumentsIncomplete, NotFound, PermissionDenied
from transferhub.domain.roles import Actor, Capability, require
from transferhub.domain.verification import Readiness, is_ready
from transferhub.infrastructure.repositories import (
    ActivityLogRepository,
    DocumentRepository,
    DriverRepository,
)

logger = logging.getLogger(__name__)

# Internal hooks re-read and retry when a concurrent writer beat them.
_HOOK_ATTEMPTS = 3


class DriverStateMachine:
    def __init__(self, session: AsyncSession, clock: Optional[Clock] = None):
        self.session = session
        self.clock = clock or SystemClock()
        self.drivers = DriverRepository(session)
        self.documents = DocumentRepository(session)
        self.activity = ActivityLogRepository(session)

    # ── reads ─────────────────────────────────────────────────────────

    async def get(self, driver_id: int) -> Driver:
        driver = await self.drivers.get(driver_id)
        if driver is None:
            raise NotFound(f"Driver {driver_id} not found")
        return driver

    async def profile_for(self, actor: Actor) -> Driver:
        """The actor's driver profile, created unverified on first access."""
        require(actor, Capability.MANAGE_OWN_PROFILE)
        driver = await self.drivers.get_by_account(actor.user_id)
        if driver is not None:
            return driver
        try:
            driver = await self.drivers.create(Driver(account_id=actor.user_id))
        except IntegrityError as exc:
            raise Conflict("Driver profile was created concurrently; retry") from exc
        logger.info("Created driver profile %s for account %s", driver.id, actor.user_id)
        return driver

    async def list(
        self,
        actor: Actor,
        status: Optional[VerificationStatus] = None,
        available: Optional[bool] = None,
    ) -> list[Driver]:
        require(actor, Capability.REVIEW_DRIVERS)
        return await self.drivers.list(status=status, available=available)

    async def list_documents(self, driver_id: int, actor: Actor) -> list[Document]:
        driver = await self.get(driver_id)
        self._require_owner_or(driver, actor, Capability.REVIEW_DRIVERS)
        return await self.documents.list_for_driver(driver_id)

    async def readiness(self, driver_id: int, now: Optional[datetime] = None) -> Readiness:
        documents = await self.documents.list_for_driver(driver_id)
        return is_ready(documents, now or self.clock.now())

    async def activity_log(self, driver_id: int, actor: Actor, limit: int = 10) -> list[ActivityEntry]:
        require(actor, Capability.REVIEW_DRIVERS)
        await self.get(driver_id)
        return await self.activity.list_for_driver(driver_id, limit=limit)

    # ── partner operations ────────────────────────────────────────────

    async def update_license(self, driver_id: int, license_number: Optional[str], actor: Actor) -> Driver:
        driver = await self.get(driver_id)
        self._require_owner_or(driver, actor, Capability.REVIEW_DRIVERS)
        await self.drivers.update_license(driver_id, (license_number or "").strip() or None)
        return await self.get(driver_id)

    async def upload_document(
        self,
        driver_id: int,
        doc_type: DocType,
        storage_location: str,
        actor: Actor,
        *,
        name: Optional[str] = None,
        expiry_date: Optional[datetime] = None,
    ) -> Document:
        driver = await self.get(driver_id)
        self._require_owner_or(driver, actor, Capability.REVIEW_DRIVERS)
        document = await self.documents.replace(
            Document(
                driver_id=driver_id,
                doc_type=doc_type,
                storage_location=storage_location,
                name=name,
                expiry_date=expiry_date,
                uploaded_at=self.clock.now(),
            )
        )
        await self.on_document_changed(driver_id)
        return document

    async def submit_for_review(self, driver_id: int, actor: Actor) -> Driver:
        driver = await self.get(driver_id)
        self._require_owner_or(driver, actor, Capability.REVIEW_DRIVERS)
        readiness = await self.readiness(driver_id)
        if not readiness.ready:
            raise DocumentsIncomplete(readiness.missing)
        expected = driver.guard()
        if driver.submit_for_review():
            await self._save(driver, expected)
            logger.info("Driver %s submitted for review", driver.id)
        return driver

    async def set_availability(
        self,
        driver_id: int,
        desired: bool,
        actor: Actor,
        note: Optional[str] = None,
    ) -> Driver:
        driver = await self.get(driver_id)
        as_admin = self._require_owner_or(driver, actor, Capability.MANAGE_ANY_AVAILABILITY)
        expected = driver.guard()
        driver.set_availability(desired)
        await self._save(driver, expected)
        if as_admin:
            await self._log(
                actor,
                "availability_changed",
                driver,
                new_status=desired,
                note=note,
            )
        return driver

    # ── admin decisions ───────────────────────────────────────────────

    async def approve(self, driver_id: int, actor: Actor) -> Driver:
        require(actor, Capability.REVIEW_DRIVERS)
        driver = await self.get(driver_id)
        if driver.verification_status == VerificationStatus.DECLINED:
            readiness = await self.readiness(driver_id)
            if not readiness.ready:
                raise DocumentsIncomplete(readiness.missing)
        expected = driver.guard()
        driver.approve(self.clock.now())
        await self._save(driver, expected)
        await self.documents.mark_verified(driver_id)
        await self._log(actor, "driver_approved", driver, verification_status="verified")
        logger.info("Driver %s approved by %s", driver.id, actor.user_id)
        return driver

    async def decline(self, driver_id: int, actor: Actor, reason: Optional[str] = None) -> Driver:
        require(actor, Capability.REVIEW_DRIVERS)
        driver = await self.get(driver_id)
        expected = driver.guard()
        driver.decline(reason)
        await self._save(driver, expected)
        await self._log(
            actor,
            "driver_declined",
            driver,
            verification_status="declined",
            reason=driver.decline_reason,
        )
        logger.info("Driver %s declined by %s", driver.id, actor.user_id)
        return driver

    # ── hooks ─────────────────────────────────────────────────────────

    async def on_document_changed(self, driver_id: int) -> Driver:
        """Demote a verified driver to pending and take them off duty."""
        for _ in range(_HOOK_ATTEMPTS):
            driver = await self.get(driver_id)
            expected = driver.guard()
            if not driver.on_document_changed():
                return driver
            if await self.drivers.save_if(driver, expected):
                logger.info("Driver %s requires re-verification", driver_id)
                return driver
        raise Conflict(f"Driver {driver_id} kept changing during document update")

    # ── internals ─────────────────────────────────────────────────────

    async def _save(self, driver: Driver, expected: dict) -> None:
        if not await self.drivers.save_if(driver, expected):
            raise Conflict(f"Driver {driver.id} was modified concurrently")

    @staticmethod
    def _require_owner_or(driver: Driver, actor: Actor, capability: Capability) -> bool:
        """Allow the profile owner or a holder of *capability*.

        Returns True when access was granted through the capability.
        """
        if actor.can(capability):
            return True
        if actor.can(Capability.MANAGE_OWN_PROFILE) and driver.account_id == actor.user_id:
            return False
        raise PermissionDenied(f"Not allowed to manage driver {driver.id}")

    async def _log(self, actor: Actor, action: str, driver: Driver, **details) -> None:
        await self.activity.add(
            ActivityEntry(
                actor_id=actor.user_id,
                action=action,
                driver_id=driver.id,
                details={k: v for k, v in details.items() if v is not None},
            )
        )
