"""
Staff assignment and on-site progress for confirmed bookings.

Tracking only ever moves one step forward:
NOT_STARTED -> BOOKING_STARTED -> PROVIDER_ON_THE_WAY -> SERVICE_STARTED -> COMPLETED
"""
import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from models import db
from models.booking import Booking
from models.business import BusinessProfile
from models.enums import (
    ACTIVE_ASSIGNMENT_STATUSES,
    ASSIGNMENT_TRANSITIONS,
    AssignmentStatus,
    BookingStatus,
    PayType,
    StaffAvailability,
    TRACKING_TRANSITIONS,
    TrackingStatus,
)
from models.staff_assignment import StaffAssignment, StaffEarning
from models.user import User
from services.errors import (
    AssignmentConflict,
    BookingNotConfirmed,
    ConcurrentConflict,
    EarlyStartReasonRequired,
    Forbidden,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from services.notifier import notify
from utils.audit import AssignmentResponded, StaffAssigned, TrackingAdvanced, log_event
from utils.clock import utcnow
from utils.money import percent_of
from utils.slot_time import SlotTimeError, slot_start_utc
from utils.transactions import atomic

logger = logging.getLogger(__name__)


def _provider_id_for(business_id):
    business = db.session.get(BusinessProfile, business_id)
    return business.owner_user_id if business else None


def recompute_staff_availability(staff_id: int):
    """NOT_AVAILABLE if switched off by hand, ON_WORK while holding an accepted job, else AVAILABLE."""
    staff = db.session.get(User, staff_id)
    if staff is None:
        return None

    if staff.manual_unavailable:
        value = StaffAvailability.NOT_AVAILABLE
    else:
        busy = (
            db.session.query(StaffAssignment.id)
            .join(Booking, Booking.id == StaffAssignment.booking_id)
            .filter(
                StaffAssignment.staff_id == staff_id,
                StaffAssignment.status == AssignmentStatus.ACCEPTED,
                Booking.status == BookingStatus.CONFIRMED,
            )
            .first()
        )
        value = StaffAvailability.ON_WORK if busy else StaffAvailability.AVAILABLE

    if staff.availability != value:
        staff.availability = value
        db.session.commit()
    return value


def set_manual_availability(staff_id: int, available: bool):
    staff = db.session.get(User, staff_id)
    if staff is None:
        raise NotFound("Staff member not found")
    staff.manual_unavailable = not available
    db.session.commit()
    return recompute_staff_availability(staff_id)


def _parse_pay_terms(pay_type, pay_value):
    if pay_type is None:
        return None, None
    try:
        kind = PayType(str(pay_type).upper())
    except ValueError:
        raise ValidationError("pay_type must be FIXED or PERCENTAGE")
    try:
        value = float(pay_value)
    except (TypeError, ValueError):
        raise ValidationError("pay_value must be a number")
    if value <= 0:
        raise ValidationError("pay_value must be positive")
    if kind == PayType.PERCENTAGE and value > 100:
        raise ValidationError("pay_value percentage cannot exceed 100")
    return kind, value


def assign_staff(booking_id: int, provider_id: int, staff_id: int, pay_type=None, pay_value=None, now=None):
    now = now or utcnow()
    kind, value = _parse_pay_terms(pay_type, pay_value)

    try:
        with atomic():
            booking = Booking.query.filter_by(id=booking_id).with_for_update().first()
            if booking is None:
                raise NotFound("Booking not found")
            if _provider_id_for(booking.business_id) != provider_id:
                raise Forbidden("Booking belongs to another business")
            if booking.status != BookingStatus.CONFIRMED:
                raise BookingNotConfirmed()

            staff = db.session.get(User, staff_id)
            if staff is None or not staff.has_role("STAFF"):
                raise ValidationError("Staff member not found")
            if staff.manual_unavailable:
                raise ValidationError("Staff member is not available")

            active = (
                StaffAssignment.query
                .filter(
                    StaffAssignment.booking_id == booking_id,
                    StaffAssignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES),
                )
                .first()
            )
            if active:
                raise AssignmentConflict()

            assignment = StaffAssignment(
                booking_id=booking_id,
                staff_id=staff_id,
                assigned_by=provider_id,
                status=AssignmentStatus.PENDING,
                pay_type=kind,
                pay_value=value,
                created_at=now,
            )
            db.session.add(assignment)
            db.session.flush()
            assignment_id = assignment.id
            service_name, day, slot_label = booking.service.name, booking.date, booking.slot.time
    except IntegrityError as exc:
        raise AssignmentConflict() from exc

    log_event(
        StaffAssigned(booking_id=booking_id, assignment_id=assignment_id, staff_id=staff_id),
        user_id=provider_id,
        entity="booking",
        entity_id=booking_id,
    )
    notify(
        staff_id,
        "New Assignment",
        f"You have been assigned {service_name} on {day.isoformat()} at {slot_label}.",
        sender_id=provider_id,
    )
    return db.session.get(StaffAssignment, assignment_id)


def respond_to_assignment(assignment_id: int, staff_id: int, accept: bool, now=None):
    now = now or utcnow()
    assignment = db.session.get(StaffAssignment, assignment_id)
    if assignment is None or assignment.staff_id != staff_id:
        raise NotFound("Assignment not found")
    booking_id, provider_id = assignment.booking_id, assignment.assigned_by

    target = AssignmentStatus.ACCEPTED if accept else AssignmentStatus.CANCELLED
    current = assignment.status
    # a response is only owed while the assignment is pending
    if current != AssignmentStatus.PENDING or target not in ASSIGNMENT_TRANSITIONS[current]:
        raise InvalidTransition("Assignment is no longer awaiting a response")
    with atomic():
        changed = (
            StaffAssignment.query
            .filter(StaffAssignment.id == assignment_id, StaffAssignment.status == current)
            .update(
                {StaffAssignment.status: target, StaffAssignment.responded_at: now},
                synchronize_session=False,
            )
        )
    if changed != 1:
        raise InvalidTransition("Assignment is no longer awaiting a response")

    recompute_staff_availability(staff_id)
    log_event(
        AssignmentResponded(assignment_id=assignment_id, status=target.value),
        user_id=staff_id,
        entity="staff_assignment",
        entity_id=assignment_id,
    )
    notify(
        provider_id,
        "Assignment Accepted" if accept else "Assignment Declined",
        f"Staff {'accepted' if accept else 'declined'} the assignment for booking {booking_id}.",
        sender_id=staff_id,
    )
    return db.session.get(StaffAssignment, assignment_id)


def _parse_tracking_status(value) -> TrackingStatus:
    try:
        return TrackingStatus(str(value or "").upper())
    except ValueError:
        raise ValidationError("Unknown tracking status")


def _check_early_start(booking, reason, now):
    grace = timedelta(minutes=current_app.config.get("EARLY_START_GRACE_MINUTES", 30))
    try:
        start = slot_start_utc(booking.date, booking.slot.time, current_app.config.get("SERVICE_TIMEZONE", "UTC"))
    except SlotTimeError as exc:
        raise ValidationError(str(exc), code="INVALID_SLOT_TIME")
    if start - now > grace and not reason:
        raise EarlyStartReasonRequired()


def _staff_share(assignment, provider_earnings):
    if assignment.pay_type == PayType.FIXED and assignment.pay_value is not None:
        return min(int(assignment.pay_value), provider_earnings)
    if assignment.pay_type == PayType.PERCENTAGE and assignment.pay_value is not None:
        return percent_of(provider_earnings, assignment.pay_value)
    return percent_of(provider_earnings, current_app.config.get("DEFAULT_STAFF_SHARE_PERCENT", 50))


def advance_tracking(booking_id: int, staff_id: int, target, early_start_reason=None, now=None) -> TrackingStatus:
    """Move a booking one step along its tracking states. Returns the new state."""
    now = now or utcnow()
    target = _parse_tracking_status(target)
    reason = (early_start_reason or "").strip()[:255] or None

    with atomic():
        booking = db.session.get(Booking, booking_id)
        if booking is None:
            raise NotFound("Booking not found")
        if booking.status == BookingStatus.CANCELLED:
            raise InvalidTransition("Booking is cancelled")

        assignment = (
            StaffAssignment.query
            .filter_by(booking_id=booking_id, staff_id=staff_id, status=AssignmentStatus.ACCEPTED)
            .first()
        )
        if assignment is None:
            raise Forbidden("You are not the assigned staff for this booking")
        if booking.status != BookingStatus.CONFIRMED:
            raise BookingNotConfirmed()

        current = booking.tracking_status
        if target not in TRACKING_TRANSITIONS[current]:
            raise InvalidTransition(f"Cannot move from {current.value} to {target.value}")

        values = {Booking.tracking_status: target}
        if target == TrackingStatus.BOOKING_STARTED:
            _check_early_start(booking, reason, now)
            values[Booking.early_start_reason] = reason
        if target == TrackingStatus.COMPLETED:
            values[Booking.status] = BookingStatus.COMPLETED
            values[Booking.completed_at] = now

        changed = (
            Booking.query
            .filter(
                Booking.id == booking_id,
                Booking.status == BookingStatus.CONFIRMED,
                Booking.tracking_status == current,
            )
            .update(values, synchronize_session=False)
        )
        if changed != 1:
            latest = db.session.query(Booking.status).filter(Booking.id == booking_id).scalar()
            if latest == BookingStatus.CANCELLED:
                raise InvalidTransition("Booking is cancelled")
            raise ConcurrentConflict()

        if target == TrackingStatus.COMPLETED:
            if AssignmentStatus.COMPLETED not in ASSIGNMENT_TRANSITIONS[assignment.status]:
                raise InvalidTransition(f"Cannot complete a {assignment.status.value} assignment")
            assignment.status = AssignmentStatus.COMPLETED
            share = _staff_share(assignment, booking.provider_earnings)
            db.session.add(
                StaffEarning(
                    staff_id=staff_id,
                    booking_id=booking_id,
                    business_id=booking.business_id,
                    total_amount=booking.provider_earnings,
                    staff_share=share,
                    business_share=booking.provider_earnings - share,
                )
            )
        customer_id, business_id = booking.user_id, booking.business_id

    log_event(
        TrackingAdvanced(
            booking_id=booking_id,
            from_status=current.value,
            to_status=target.value,
            early_start_reason=reason if target == TrackingStatus.BOOKING_STARTED else None,
        ),
        user_id=staff_id,
        entity="booking",
        entity_id=booking_id,
    )

    if target == TrackingStatus.COMPLETED:
        recompute_staff_availability(staff_id)
        notify(customer_id, "Service Completed", "Your booking has been completed.", sender_id=staff_id)
        notify(_provider_id_for(business_id), "Service Completed", f"Booking {booking_id} was completed.", sender_id=staff_id)
    else:
        label = target.value.replace("_", " ").lower()
        notify(customer_id, "Booking Update", f"Your booking status is now: {label}.", sender_id=staff_id, email=False)
    return target
