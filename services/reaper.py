"""
Background sweeps: reclaim lapsed holds and send pre-visit reminders.

Both are safe to run on several instances at once: every write is a
conditional statement, so a second runner simply finds nothing left to do.
"""
import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy import exists

from models import db
from models.booking import Booking
from models.business import BusinessProfile
from models.enums import AssignmentStatus, BookingStatus, PaymentRecordStatus, TrackingStatus
from models.payment import Payment
from models.staff_assignment import StaffAssignment
from services.notifier import notify
from utils.audit import HoldsReclaimed, ReminderSent, log_event
from utils.clock import utcnow
from utils.slot_time import SlotTimeError, slot_start_utc
from utils.transactions import atomic

logger = logging.getLogger(__name__)


def purge_stale_payments(now, user_id=None, exclude_payment_id=None) -> int:
    """
    Delete PENDING payment records that no longer cover a live hold. Must be
    called inside a transaction.
    """
    live_hold = exists().where(
        Booking.payment_id == Payment.id,
        Booking.status == BookingStatus.PENDING_PAYMENT,
        Booking.expires_at > now,
    )
    q = Payment.query.filter(Payment.status == PaymentRecordStatus.PENDING, ~live_hold)
    if user_id is not None:
        q = q.filter(Payment.user_id == user_id)
    if exclude_payment_id is not None:
        q = q.filter(Payment.id != exclude_payment_id)
    stale_ids = [p.id for p in q.with_entities(Payment.id).all()]
    if not stale_ids:
        return 0

    (
        Booking.query
        .filter(
            Booking.payment_id.in_(stale_ids),
            Booking.status == BookingStatus.PENDING_PAYMENT,
            Booking.expires_at <= now,
        )
        .delete(synchronize_session=False)
    )
    # cancelled holds keep their row but lose the link
    (
        Booking.query
        .filter(Booking.payment_id.in_(stale_ids))
        .update({Booking.payment_id: None}, synchronize_session=False)
    )
    return (
        Payment.query
        .filter(Payment.id.in_(stale_ids), Payment.status == PaymentRecordStatus.PENDING)
        .delete(synchronize_session=False)
    )


def reclaim_expired_holds(now=None) -> int:
    """Delete unpaid holds whose expiry has passed. Returns how many seats came back."""
    now = now or utcnow()
    cfg = current_app.config
    with atomic(serializable=True, timeout_seconds=cfg.get("TRANSACTION_TIMEOUT_SECONDS")):
        reclaimed = (
            Booking.query
            .filter(
                Booking.status == BookingStatus.PENDING_PAYMENT,
                Booking.expires_at < now,
            )
            .delete(synchronize_session=False)
        )
        purged = purge_stale_payments(now)

    if reclaimed:
        logger.info("Reclaimed %d expired hold(s), purged %d payment record(s)", reclaimed, purged)
        log_event(HoldsReclaimed(count=reclaimed), entity="booking")
    return reclaimed


def send_booking_reminders(now=None) -> int:
    """Remind the assigned staff member and provider shortly before a visit."""
    now = now or utcnow()
    cfg = current_app.config
    lead = timedelta(minutes=cfg.get("REMINDER_LEAD_MINUTES", 30))
    window = timedelta(minutes=cfg.get("REMINDER_WINDOW_MINUTES", 5))
    tz_name = cfg.get("SERVICE_TIMEZONE", "UTC")

    candidates = (
        db.session.query(Booking, StaffAssignment)
        .join(StaffAssignment, StaffAssignment.booking_id == Booking.id)
        .filter(
            Booking.status == BookingStatus.CONFIRMED,
            Booking.tracking_status == TrackingStatus.NOT_STARTED,
            Booking.reminder_sent_at.is_(None),
            StaffAssignment.status == AssignmentStatus.ACCEPTED,
            Booking.date >= (now - timedelta(days=1)).date(),
            Booking.date <= (now + timedelta(days=1)).date(),
        )
        .all()
    )

    sent = 0
    for booking, assignment in candidates:
        try:
            start = slot_start_utc(booking.date, booking.slot.time, tz_name)
        except SlotTimeError:
            logger.warning("Booking %s has an unreadable slot time, no reminder", booking.id)
            continue
        if not (now + lead <= start <= now + lead + window):
            continue

        booking_id, staff_id = booking.id, assignment.staff_id
        service_name, slot_label = booking.service.name, booking.slot.time
        business = db.session.get(BusinessProfile, booking.business_id)
        provider_id = business.owner_user_id if business else None

        try:
            # claim first so a concurrent runner cannot send the same reminder
            claimed = (
                Booking.query
                .filter(Booking.id == booking_id, Booking.reminder_sent_at.is_(None))
                .update({Booking.reminder_sent_at: now}, synchronize_session=False)
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception("Could not mark reminder for booking %s", booking_id)
            continue
        if not claimed:
            continue

        notify(
            staff_id,
            "Upcoming Booking Reminder",
            f"You have an upcoming booking: {service_name} at {slot_label}.",
            sender_id=provider_id,
        )
        notify(
            provider_id,
            "Staff Booking Reminder",
            f"Assigned staff has {service_name} starting in {int(lead.total_seconds() // 60)} minutes at {slot_label}.",
            sender_id=staff_id,
        )
        log_event(ReminderSent(booking_id=booking_id, staff_id=staff_id), entity="booking", entity_id=booking_id)
        sent += 1

    return sent
