"""
Customer cancellation with a time-tiered fee, followed by a best-effort
gateway refund.

Fee tiers by hours left before the visit (h):
    h < 4 -> 50%, h < 12 -> 25%, h < 24 -> 10%, otherwise 0%.
"""
import logging
from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError

from models import db
from models.booking import Booking
from models.business import BusinessProfile
from models.cancellation import Cancellation
from models.enums import (
    ACTIVE_ASSIGNMENT_STATUSES,
    ASSIGNMENT_TRANSITIONS,
    AssignmentStatus,
    BookingStatus,
    CancellationReason,
    CancellationStatus,
    PaymentStatus,
    RefundStatus,
    TrackingStatus,
)
from models.payment import Payment
from models.staff_assignment import StaffAssignment
from services import gateway
from services.errors import (
    BookingCompleted,
    ExternalGatewayError,
    InvalidTransition,
    NotFound,
    ServiceInProgress,
    SlotInPast,
    StateConflict,
    ValidationError,
)
from services.notifier import notify
from services.tracking import recompute_staff_availability
from utils.audit import BookingCancelled, RefundUpdated, log_event
from utils.clock import utcnow
from utils.money import cancellation_breakdown
from utils.slot_time import SlotTimeError, slot_start_utc
from utils.transactions import atomic

logger = logging.getLogger(__name__)

# gateway refund status -> our refund status
REFUND_STATUS_MAP = {
    "succeeded": RefundStatus.PAID,
    "pending": RefundStatus.PROCESSING,
    "requires_action": RefundStatus.PROCESSING,
    "failed": RefundStatus.FAILED,
    "canceled": RefundStatus.FAILED,
}

_LATE_TRACKING = (TrackingStatus.SERVICE_STARTED, TrackingStatus.COMPLETED)


@dataclass
class CancellationResult:
    cancellation: Cancellation
    already_cancelled: bool = False

    def to_dict(self):
        c = self.cancellation
        return {
            "cancellation_id": c.id,
            "booking_id": c.booking_id,
            "already_cancelled": self.already_cancelled,
            "fee_percentage": c.fee_percentage,
            "cancellation_fee": c.cancellation_fee,
            "refund_amount": c.refund_amount,
            "hours_before_service": c.hours_before_service,
            "refund_status": c.refund_status.value,
            "refund_reference": c.stripe_refund_id,
            "status": c.status.value,
        }


def _parse_reason_type(value) -> CancellationReason:
    try:
        return CancellationReason((value or "").strip().lower())
    except ValueError:
        allowed = ", ".join(r.value for r in CancellationReason)
        raise ValidationError(f"reason_type must be one of: {allowed}")


def _hours_before_service(booking: Booking, now) -> float:
    try:
        start = slot_start_utc(booking.date, booking.slot.time, current_app.config.get("SERVICE_TIMEZONE", "UTC"))
    except SlotTimeError as exc:
        raise ValidationError(str(exc), code="INVALID_SLOT_TIME")
    return (start - now).total_seconds() / 3600


def _check_cancellable(booking: Booking, now) -> float:
    """Preconditions in order; returns hours left before the visit."""
    if booking.status == BookingStatus.COMPLETED:
        raise BookingCompleted()

    accepted = (
        StaffAssignment.query
        .filter_by(booking_id=booking.id, status=AssignmentStatus.ACCEPTED)
        .first()
    )
    if accepted and booking.tracking_status in _LATE_TRACKING:
        raise ServiceInProgress()

    hours = _hours_before_service(booking, now)
    if hours <= 0:
        raise SlotInPast()
    return hours


def _load_own_booking(booking_id, requester_id, lock=False) -> Booking:
    q = Booking.query.filter_by(id=booking_id)
    if lock:
        q = q.with_for_update()
    booking = q.first()
    if not booking or booking.user_id != requester_id:
        raise NotFound("Booking not found")
    return booking


def preview(booking_id: int, requester_id: int, now=None) -> dict:
    """Fee breakdown the customer sees before confirming; changes nothing."""
    now = now or utcnow()
    booking = _load_own_booking(booking_id, requester_id)
    if booking.status == BookingStatus.CANCELLED:
        raise StateConflict("Booking already cancelled", code="ALREADY_CANCELLED")
    hours = _check_cancellable(booking, now)
    paid = booking.payment_status == PaymentStatus.PAID
    out = cancellation_breakdown(booking.total_amount, hours, paid)
    out["hours_before_service"] = round(hours, 2)
    out["paid"] = paid
    return out


def cancel(booking_id: int, requester_id: int, reason: str, reason_type, now=None) -> CancellationResult:
    """
    Idempotent per booking: a second call returns the existing cancellation.
    The refund is requested only after the cancellation has committed.
    """
    now = now or utcnow()
    cfg = current_app.config
    reason_kind = _parse_reason_type(reason_type)
    reason = (reason or "").strip()[:500] or None

    try:
        with atomic(serializable=True, timeout_seconds=cfg.get("TRANSACTION_TIMEOUT_SECONDS")):
            booking = _load_own_booking(booking_id, requester_id, lock=True)

            if booking.status == BookingStatus.CANCELLED:
                existing = Cancellation.query.filter_by(booking_id=booking_id).first()
                if existing is None:
                    raise StateConflict("Booking already cancelled", code="ALREADY_CANCELLED")
                cancellation_id, already = existing.id, True
            else:
                hours = _check_cancellable(booking, now)
                paid = booking.payment_status == PaymentStatus.PAID
                split = cancellation_breakdown(booking.total_amount, hours, paid)

                if not paid:
                    refund_status, status = RefundStatus.CANCELLED, CancellationStatus.CANCELLED
                elif split["refund_amount"] == 0:
                    refund_status, status = RefundStatus.CANCELLED, CancellationStatus.CANCELLED
                else:
                    refund_status, status = RefundStatus.PENDING, CancellationStatus.REFUND_PENDING

                cancellation = Cancellation(
                    booking_id=booking.id,
                    requested_by=requester_id,
                    reason=reason,
                    reason_type=reason_kind,
                    refund_status=refund_status,
                    refund_amount=split["refund_amount"],
                    cancellation_fee=split["cancellation_fee"],
                    fee_percentage=split["fee_percentage"],
                    hours_before_service=round(hours, 2),
                    status=status,
                    requested_at=now,
                )
                db.session.add(cancellation)

                booking.status = BookingStatus.CANCELLED
                booking.cancelled_at = now
                booking.expires_at = None
                booking.payment_link = None
                if paid:
                    booking.payment_status = PaymentStatus.REFUNDED
                    # provider keeps the fee; the platform forfeits its commission
                    booking.provider_earnings = split["cancellation_fee"]
                    booking.platform_fee = 0

                active = (
                    StaffAssignment.query
                    .filter(
                        StaffAssignment.booking_id == booking.id,
                        StaffAssignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES),
                    )
                    .all()
                )
                staff_ids = [a.staff_id for a in active]
                for assignment in active:
                    if AssignmentStatus.CANCELLED not in ASSIGNMENT_TRANSITIONS[assignment.status]:
                        raise InvalidTransition(f"Cannot cancel a {assignment.status.value} assignment")
                    assignment.status = AssignmentStatus.CANCELLED
                    assignment.responded_at = now

                db.session.flush()
                cancellation_id, already = cancellation.id, False
                business_id, service_name = booking.business_id, booking.service.name
    except IntegrityError:
        # a concurrent request created the cancellation first
        existing = Cancellation.query.filter_by(booking_id=booking_id).first()
        if existing is None:
            raise
        return CancellationResult(existing, already_cancelled=True)

    cancellation = db.session.get(Cancellation, cancellation_id)
    if already:
        return CancellationResult(cancellation, already_cancelled=True)

    log_event(
        BookingCancelled(
            booking_id=booking_id,
            cancellation_id=cancellation.id,
            fee_percentage=cancellation.fee_percentage,
            cancellation_fee=cancellation.cancellation_fee,
            refund_amount=cancellation.refund_amount,
            hours_before_service=cancellation.hours_before_service,
        ),
        user_id=requester_id,
        entity="booking",
        entity_id=booking_id,
    )

    for staff_id in staff_ids:
        recompute_staff_availability(staff_id)

    if cancellation.refund_status == RefundStatus.PENDING:
        cancellation = request_refund(cancellation.id, now=now)

    _notify_cancelled(cancellation, requester_id, business_id, service_name, staff_ids)
    return CancellationResult(cancellation)


def request_refund(cancellation_id: int, now=None) -> Cancellation:
    """
    Ask the gateway to refund. A gateway error leaves the refund PENDING for
    reconciliation; it is never marked paid without the gateway saying so.
    """
    now = now or utcnow()
    cancellation = db.session.get(Cancellation, cancellation_id)
    if cancellation is None or cancellation.refund_amount <= 0:
        return cancellation

    booking = db.session.get(Booking, cancellation.booking_id)
    payment = db.session.get(Payment, booking.payment_id) if booking and booking.payment_id else None
    if not payment or not payment.payment_intent_id:
        logger.warning("No payment intent for cancellation %s, refund left pending", cancellation_id)
        return cancellation

    try:
        refund = gateway.create_refund(
            payment.payment_intent_id,
            cancellation.refund_amount,
            idempotency_key=f"cancellation-{cancellation.id}",
            metadata={"cancellation_id": str(cancellation.id), "booking_id": str(cancellation.booking_id)},
        )
    except ExternalGatewayError:
        logger.warning("Refund request for cancellation %s failed, left pending", cancellation_id)
        return cancellation

    return apply_refund_status(cancellation.id, refund.get("status"), refund.get("id"), now=now)


def apply_refund_status(cancellation_id: int, gateway_status: str, refund_id=None, now=None) -> Cancellation:
    """Record the gateway's view of a refund. A PAID refund is final."""
    now = now or utcnow()
    cancellation = db.session.get(Cancellation, cancellation_id)
    if cancellation is None:
        return None

    new_status = REFUND_STATUS_MAP.get((gateway_status or "").lower())
    if refund_id and not cancellation.stripe_refund_id:
        cancellation.stripe_refund_id = refund_id
    if new_status is None or cancellation.refund_status == RefundStatus.PAID:
        db.session.commit()
        return cancellation

    cancellation.refund_status = new_status
    if new_status == RefundStatus.PAID:
        cancellation.status = CancellationStatus.REFUNDED
        cancellation.refunded_at = now
    elif new_status == RefundStatus.FAILED:
        cancellation.status = CancellationStatus.REFUND_FAILED
    db.session.commit()

    log_event(
        RefundUpdated(
            cancellation_id=cancellation.id,
            refund_status=new_status.value,
            stripe_refund_id=cancellation.stripe_refund_id,
        ),
        entity="cancellation",
        entity_id=cancellation.id,
    )
    return cancellation


def handle_refund_event(refund: dict, now=None):
    """refund.updated style webhook payloads."""
    refund_id = refund.get("id")
    cancellation = Cancellation.query.filter_by(stripe_refund_id=refund_id).first() if refund_id else None
    if cancellation is None:
        meta = refund.get("metadata") or {}
        if meta.get("cancellation_id"):
            cancellation = db.session.get(Cancellation, int(meta["cancellation_id"]))
    if cancellation is None:
        logger.info("Refund event %s does not match a cancellation", refund_id)
        return None
    return apply_refund_status(cancellation.id, refund.get("status"), refund_id, now=now)


def retry_pending_refunds(now=None) -> int:
    """Re-request refunds that never reached the gateway. Returns how many got a reference."""
    pending = (
        Cancellation.query
        .filter(
            Cancellation.refund_status == RefundStatus.PENDING,
            Cancellation.refund_amount > 0,
            Cancellation.stripe_refund_id.is_(None),
        )
        .all()
    )
    done = 0
    for c in pending:
        updated = request_refund(c.id, now=now)
        if updated is not None and updated.stripe_refund_id:
            done += 1
    return done


def _notify_cancelled(cancellation, customer_id, business_id, service_name, staff_ids):
    business = db.session.get(BusinessProfile, business_id)
    provider_id = business.owner_user_id if business else None

    if cancellation.refund_amount:
        customer_body = (
            f"Your booking for {service_name} was cancelled. "
            f"Fee {cancellation.cancellation_fee}, refund {cancellation.refund_amount}."
        )
    else:
        customer_body = f"Your booking for {service_name} was cancelled."
    notify(customer_id, "Booking Cancelled", customer_body, sender_id=provider_id)
    notify(
        provider_id,
        "Booking Cancelled by Customer",
        f"A booking for {service_name} was cancelled. You keep the cancellation fee of {cancellation.cancellation_fee}.",
        sender_id=customer_id,
    )
    for staff_id in staff_ids:
        notify(staff_id, "Assignment Cancelled", f"The booking for {service_name} was cancelled.", sender_id=provider_id)
