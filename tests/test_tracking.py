from datetime import datetime

import pytest

from conftest import NOW, confirmed_booking, make_user, reserve_one
from models import db
from models.booking import Booking
from models.enums import ASSIGNMENT_TRANSITIONS, AssignmentStatus, BookingStatus, StaffAvailability, TrackingStatus
from models.staff_assignment import StaffAssignment, StaffEarning
from models.user import User
from services.cancellations import cancel
from services.errors import (
    AssignmentConflict,
    BookingNotConfirmed,
    EarlyStartReasonRequired,
    Forbidden,
    InvalidTransition,
    ValidationError,
)
from services import tracking
from services.tracking import advance_tracking, assign_staff, respond_to_assignment, set_manual_availability

# slot is 6:00 PM on the visit day
FORTY_FIVE_EARLY = datetime(2030, 1, 15, 17, 15)
TWENTY_EARLY = datetime(2030, 1, 15, 17, 40)


@pytest.fixture
def accepted(world):
    booking_id = confirmed_booking(world)
    assignment = assign_staff(booking_id, world.provider.id, world.staff.id, "PERCENTAGE", 40, now=NOW)
    respond_to_assignment(assignment.id, world.staff.id, accept=True, now=NOW)
    return booking_id


def test_assignment_accept_puts_staff_on_work(world, accepted):
    assignment = StaffAssignment.query.filter_by(booking_id=accepted).one()
    assert assignment.status == AssignmentStatus.ACCEPTED
    assert db.session.get(User, world.staff.id).availability == StaffAvailability.ON_WORK


def test_skipping_states_is_rejected(world, accepted):
    with pytest.raises(InvalidTransition):
        advance_tracking(accepted, world.staff.id, "COMPLETED", now=TWENTY_EARLY)
    assert db.session.get(Booking, accepted).tracking_status == TrackingStatus.NOT_STARTED


def test_early_start_needs_a_reason(world, accepted):
    with pytest.raises(EarlyStartReasonRequired):
        advance_tracking(accepted, world.staff.id, "BOOKING_STARTED", now=FORTY_FIVE_EARLY)

    status = advance_tracking(
        accepted, world.staff.id, "BOOKING_STARTED", early_start_reason="Customer asked me to come early", now=FORTY_FIVE_EARLY
    )
    assert status == TrackingStatus.BOOKING_STARTED
    assert db.session.get(Booking, accepted).early_start_reason == "Customer asked me to come early"


def test_start_within_grace_needs_no_reason(world, accepted):
    assert advance_tracking(accepted, world.staff.id, "BOOKING_STARTED", now=TWENTY_EARLY) == TrackingStatus.BOOKING_STARTED


def test_full_walk_to_completed_pays_staff(world, accepted):
    for target in ("BOOKING_STARTED", "PROVIDER_ON_THE_WAY", "SERVICE_STARTED", "COMPLETED"):
        advance_tracking(accepted, world.staff.id, target, now=TWENTY_EARLY)

    booking = db.session.get(Booking, accepted)
    assert booking.status == BookingStatus.COMPLETED
    assert booking.tracking_status == TrackingStatus.COMPLETED
    assert booking.completed_at == TWENTY_EARLY

    earning = StaffEarning.query.filter_by(booking_id=accepted).one()
    assert earning.total_amount == 900
    assert earning.staff_share == 360
    assert earning.business_share == 540

    assert StaffAssignment.query.filter_by(booking_id=accepted).one().status == AssignmentStatus.COMPLETED
    assert db.session.get(User, world.staff.id).availability == StaffAvailability.AVAILABLE


def test_no_regression(world, accepted):
    advance_tracking(accepted, world.staff.id, "BOOKING_STARTED", now=TWENTY_EARLY)
    with pytest.raises(InvalidTransition):
        advance_tracking(accepted, world.staff.id, "NOT_STARTED", now=TWENTY_EARLY)


def test_only_assigned_staff_may_advance(world, accepted):
    other_staff = make_user("kiran@example.com", "STAFF")
    with pytest.raises(Forbidden):
        advance_tracking(accepted, other_staff.id, "BOOKING_STARTED", now=TWENTY_EARLY)


def test_cancelled_booking_rejects_tracking(world, accepted):
    cancel(accepted, world.customer.id, None, "personal", now=NOW)
    with pytest.raises(InvalidTransition):
        advance_tracking(accepted, world.staff.id, "BOOKING_STARTED", now=TWENTY_EARLY)
    assert db.session.get(User, world.staff.id).availability == StaffAvailability.AVAILABLE


def test_cancel_landing_mid_transition_is_not_overwritten(world, accepted, monkeypatch):
    def cancelled_meanwhile(booking, reason, now):
        # a cancellation committed after the booking row was read
        Booking.query.filter_by(id=booking.id).update(
            {Booking.status: BookingStatus.CANCELLED}, synchronize_session=False
        )

    monkeypatch.setattr(tracking, "_check_early_start", cancelled_meanwhile)
    with pytest.raises(InvalidTransition):
        advance_tracking(accepted, world.staff.id, "BOOKING_STARTED", now=TWENTY_EARLY)

    db.session.expire_all()
    assert db.session.get(Booking, accepted).tracking_status == TrackingStatus.NOT_STARTED


def test_unknown_tracking_status(world, accepted):
    with pytest.raises(ValidationError):
        advance_tracking(accepted, world.staff.id, "TELEPORTED", now=TWENTY_EARLY)


def test_fixed_pay_is_capped_at_provider_earnings(world):
    booking_id = confirmed_booking(world)
    assignment = assign_staff(booking_id, world.provider.id, world.staff.id, "FIXED", 5000, now=NOW)
    respond_to_assignment(assignment.id, world.staff.id, accept=True, now=NOW)
    for target in ("BOOKING_STARTED", "PROVIDER_ON_THE_WAY", "SERVICE_STARTED", "COMPLETED"):
        advance_tracking(booking_id, world.staff.id, target, now=TWENTY_EARLY)

    earning = StaffEarning.query.filter_by(booking_id=booking_id).one()
    assert earning.staff_share == 900
    assert earning.business_share == 0


def test_default_split_without_terms(world):
    booking_id = confirmed_booking(world)
    assignment = assign_staff(booking_id, world.provider.id, world.staff.id, now=NOW)
    respond_to_assignment(assignment.id, world.staff.id, accept=True, now=NOW)
    for target in ("BOOKING_STARTED", "PROVIDER_ON_THE_WAY", "SERVICE_STARTED", "COMPLETED"):
        advance_tracking(booking_id, world.staff.id, target, now=TWENTY_EARLY)

    assert StaffEarning.query.filter_by(booking_id=booking_id).one().staff_share == 450


def test_assignment_rules(world):
    hold = reserve_one(world)
    with pytest.raises(BookingNotConfirmed):
        assign_staff(hold.booking_ids[0], world.provider.id, world.staff.id, now=NOW)


def test_one_active_assignment_per_booking(world):
    booking_id = confirmed_booking(world)
    second_staff = make_user("kiran@example.com", "STAFF")
    assign_staff(booking_id, world.provider.id, world.staff.id, now=NOW)

    with pytest.raises(AssignmentConflict):
        assign_staff(booking_id, world.provider.id, second_staff.id, now=NOW)


def test_declined_assignment_frees_booking_for_another_staff(world):
    booking_id = confirmed_booking(world)
    second_staff = make_user("kiran@example.com", "STAFF")
    first = assign_staff(booking_id, world.provider.id, world.staff.id, now=NOW)
    respond_to_assignment(first.id, world.staff.id, accept=False, now=NOW)

    second = assign_staff(booking_id, world.provider.id, second_staff.id, now=NOW)
    assert second.status == AssignmentStatus.PENDING

    with pytest.raises(InvalidTransition):
        respond_to_assignment(first.id, world.staff.id, accept=True, now=NOW)


def test_other_provider_cannot_assign(world):
    booking_id = confirmed_booking(world)
    stranger = make_user("rival@example.com", "PROVIDER")
    with pytest.raises(Forbidden):
        assign_staff(booking_id, stranger.id, world.staff.id, now=NOW)


def test_bad_pay_terms(world):
    booking_id = confirmed_booking(world)
    with pytest.raises(ValidationError):
        assign_staff(booking_id, world.provider.id, world.staff.id, "PERCENTAGE", 150, now=NOW)
    with pytest.raises(ValidationError):
        assign_staff(booking_id, world.provider.id, world.staff.id, "BARTER", 1, now=NOW)


def test_manual_unavailable_wins(world, accepted):
    assert set_manual_availability(world.staff.id, False) == StaffAvailability.NOT_AVAILABLE
    assert set_manual_availability(world.staff.id, True) == StaffAvailability.ON_WORK


def test_assignment_table_covers_every_status():
    assert set(ASSIGNMENT_TRANSITIONS) == set(AssignmentStatus)
    assert ASSIGNMENT_TRANSITIONS[AssignmentStatus.COMPLETED] == set()
    assert ASSIGNMENT_TRANSITIONS[AssignmentStatus.CANCELLED] == set()


def test_accepted_assignment_cannot_be_answered_again(world, accepted):
    assignment = StaffAssignment.query.filter_by(booking_id=accepted).one()
    for accept in (True, False):
        with pytest.raises(InvalidTransition):
            respond_to_assignment(assignment.id, world.staff.id, accept=accept, now=NOW)
    assert db.session.get(StaffAssignment, assignment.id).status == AssignmentStatus.ACCEPTED
