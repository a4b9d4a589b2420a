"""Unit tests for trip and driver entity state transitions (State Pattern)."""

from datetime import timedelta

import pytest

from transferhub.domain.entities import DEFAULT_DECLINE_REASON, Driver, InviteLink, Trip
from transferhub.domain.enums import InviteStatus, TripStatus, VerificationStatus
from transferhub.domain.errors import Conflict, InvalidState, NotVerified
from tests.conftest import NOW


class TestTripStateMachine:
    def test_initial_status_is_pending(self):
        trip = Trip()
        assert trip.status == TripStatus.PENDING
        assert trip.driver_id is None

    # ── Valid transitions ─────────────────────────────────────────

    def test_assignment_keeps_trip_pending(self):
        trip = Trip()
        trip.assign_driver(7)
        assert trip.status == TripStatus.PENDING
        assert trip.driver_id == 7
        assert trip.driver_acknowledged is False

    def test_acknowledge_does_not_change_status(self):
        trip = Trip(driver_id=7)
        trip.acknowledge()
        assert trip.driver_acknowledged is True
        assert trip.status == TripStatus.PENDING

    def test_accept_moves_to_accepted(self):
        trip = Trip(driver_id=7)
        trip.accept(NOW)
        assert trip.status == TripStatus.ACCEPTED
        assert trip.driver_acknowledged is True

    def test_full_lifecycle_sets_timestamps(self):
        trip = Trip(driver_id=7)
        trip.accept(NOW)
        trip.start(NOW + timedelta(minutes=5))
        assert trip.started_at == NOW + timedelta(minutes=5)
        trip.complete(NOW + timedelta(minutes=50))
        assert trip.status == TripStatus.COMPLETED
        assert trip.completed_at == NOW + timedelta(minutes=50)
        assert trip.started_at <= trip.completed_at
        assert trip.driver_id == 7

    def test_cancel_clears_driver(self):
        trip = Trip(driver_id=7, status=TripStatus.ACCEPTED)
        assert trip.cancel(NOW) is True
        assert trip.status == TripStatus.CANCELLED
        assert trip.driver_id is None

    def test_cancel_in_progress_is_allowed(self):
        trip = Trip(driver_id=7, status=TripStatus.IN_PROGRESS, started_at=NOW)
        trip.cancel(NOW)
        assert trip.status == TripStatus.CANCELLED
        assert trip.started_at is None

    def test_cancel_twice_is_a_no_op(self):
        trip = Trip(status=TripStatus.CANCELLED)
        assert trip.cancel(NOW) is False
        assert trip.status == TripStatus.CANCELLED

    # ── Invalid transitions ───────────────────────────────────────

    def test_accept_without_driver_fails(self):
        trip = Trip()
        with pytest.raises(InvalidState):
            trip.accept(NOW)

    def test_pending_to_in_progress_fails(self):
        trip = Trip(driver_id=7)
        with pytest.raises(InvalidState):
            trip.start(NOW)

    def test_pending_to_completed_fails(self):
        trip = Trip(driver_id=7)
        with pytest.raises(InvalidState):
            trip.complete(NOW)

    def test_completed_cannot_be_cancelled(self):
        trip = Trip(driver_id=7, status=TripStatus.COMPLETED)
        with pytest.raises(InvalidState):
            trip.cancel(NOW)

    def test_assign_on_accepted_trip_fails(self):
        trip = Trip(driver_id=7, status=TripStatus.ACCEPTED)
        with pytest.raises(InvalidState):
            trip.assign_driver(8)

    def test_assign_over_existing_driver_conflicts(self):
        trip = Trip(driver_id=7)
        with pytest.raises(Conflict):
            trip.assign_driver(8)

    # ── Admin override ────────────────────────────────────────────

    def test_override_can_jump_forward(self):
        trip = Trip(driver_id=7)
        trip.override_status(TripStatus.COMPLETED, NOW)
        assert trip.status == TripStatus.COMPLETED
        assert trip.started_at == NOW
        assert trip.completed_at == NOW

    def test_override_to_cancelled_clears_driver(self):
        trip = Trip(driver_id=7, status=TripStatus.ACCEPTED)
        trip.override_status(TripStatus.CANCELLED, NOW)
        assert trip.driver_id is None

    @pytest.mark.parametrize("terminal", [TripStatus.COMPLETED, TripStatus.CANCELLED])
    def test_override_cannot_leave_terminal(self, terminal):
        trip = Trip(status=terminal)
        with pytest.raises(InvalidState):
            trip.override_status(TripStatus.PENDING, NOW)

    def test_reassign_resets_accepted_trip_to_pending(self):
        trip = Trip(driver_id=7, status=TripStatus.ACCEPTED, driver_acknowledged=True)
        trip.reassign_driver(8)
        assert trip.driver_id == 8
        assert trip.status == TripStatus.PENDING
        assert trip.driver_acknowledged is False


class TestDriverStateMachine:
    def test_submit_moves_to_pending(self):
        driver = Driver()
        assert driver.submit_for_review() is True
        assert driver.verification_status == VerificationStatus.PENDING

    def test_resubmit_while_pending_is_a_no_op(self):
        driver = Driver(verification_status=VerificationStatus.PENDING)
        assert driver.submit_for_review() is False

    def test_approve_records_time_and_clears_reason(self):
        driver = Driver(
            verification_status=VerificationStatus.DECLINED, decline_reason="blurry"
        )
        driver.approve(NOW)
        assert driver.is_verified
        assert driver.verified_at == NOW
        assert driver.decline_reason is None

    def test_decline_uses_default_reason(self):
        driver = Driver(verification_status=VerificationStatus.PENDING)
        driver.decline("   ")
        assert driver.verification_status == VerificationStatus.DECLINED
        assert driver.decline_reason == DEFAULT_DECLINE_REASON

    def test_decline_unverified_fails(self):
        with pytest.raises(InvalidState):
            Driver().decline("nope")

    def test_leaving_verified_forces_unavailable(self):
        driver = Driver(verification_status=VerificationStatus.VERIFIED, is_available=True)
        driver.decline("expired insurance")
        assert driver.is_available is False

    def test_unverified_driver_cannot_go_available(self):
        driver = Driver(verification_status=VerificationStatus.PENDING)
        with pytest.raises(NotVerified):
            driver.set_availability(True)
        assert driver.is_available is False

    def test_document_change_demotes_verified_driver(self):
        driver = Driver(
            verification_status=VerificationStatus.VERIFIED,
            is_available=True,
            verified_at=NOW,
        )
        assert driver.on_document_changed() is True
        assert driver.verification_status == VerificationStatus.PENDING
        assert driver.is_available is False
        assert driver.verified_at is None

    def test_document_change_leaves_declined_driver_alone(self):
        driver = Driver(verification_status=VerificationStatus.DECLINED)
        assert driver.on_document_changed() is False
        assert driver.verification_status == VerificationStatus.DECLINED


class TestInviteLink:
    def test_stale_only_when_active_and_past_expiry(self):
        invite = InviteLink(code="x", expires_at=NOW - timedelta(minutes=1))
        assert invite.is_stale(NOW)
        assert not InviteLink(code="y", expires_at=None).is_stale(NOW)
        assert not InviteLink(
            code="z", expires_at=NOW - timedelta(days=1), status=InviteStatus.USED
        ).is_stale(NOW)

    def test_redeem_marks_used(self):
        invite = InviteLink(code="x", expires_at=NOW + timedelta(days=1))
        invite.redeem("user-9", NOW)
        assert invite.status == InviteStatus.USED
        assert invite.used_by == "user-9"

    def test_redeem_stale_invite_expires_it(self):
        invite = InviteLink(code="x", expires_at=NOW - timedelta(days=1))
        with pytest.raises(InvalidState):
            invite.redeem("user-9", NOW)
        assert invite.status == InviteStatus.EXPIRED
