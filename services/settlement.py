"""
Applies gateway payment events to held bookings.

Gateway delivery is at-least-once, so every entry point here is idempotent:
the PAID transition on the payment record is a compare-and-set inside the
same transaction that confirms the bookings.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from flask import current_app

from models import db
from models.booking import Booking
from models.business import BusinessProfile, ProviderSubscription
from models.cart import CartItem
from models.enums import (
    ACTIVE_ASSIGNMENT_STATUSES,
    BookingStatus,
    PaymentRecordStatus,
    PaymentStatus,
)
from models.payment import Payment
from models.staff_assignment import StaffAssignment
from services.errors import HoldExpired
from services.notifier import notify
from services.reaper import purge_stale_payments
from utils.audit import PaymentFailed, PaymentSettled, SettlementRejected, SettlementSkipped, log_event
from utils.clock import utcnow
from utils.money import percent_of
from utils.transactions import atomic

logger = logging.getLogger(__name__)

SETTLED = "settled"
DUPLICATE = "duplicate"
REJECTED = "rejected"


@dataclass
class SettlementOutcome:
    status: str
    payment_id: Optional[int]
    booking_ids: List[int] = field(default_factory=list)
    reason: Optional[str] = None


class _AlreadySettled(Exception):
    pass


def commission_rate_for(business_id: int) -> float:
    """Commission percent from the provider's active plan, else the platform default."""
    default = current_app.config.get("DEFAULT_COMMISSION_RATE", 10)
    business = db.session.get(BusinessProfile, business_id)
    if not business:
        return default
    sub = (
        ProviderSubscription.query
        .filter(
            ProviderSubscription.user_id == business.owner_user_id,
            ProviderSubscription.status.in_(ProviderSubscription.ACTIVE_STATUSES),
        )
        .first()
    )
    if sub and sub.plan and sub.plan.commission_rate is not None:
        return sub.plan.commission_rate
    return default


def _already_settled(payment_id, booking_ids) -> bool:
    payment = db.session.get(Payment, payment_id)
    if payment and payment.status == PaymentRecordStatus.PAID:
        return True
    if not booking_ids:
        return False
    confirmed = (
        Booking.query
        .filter(
            Booking.id.in_(booking_ids),
            Booking.status == BookingStatus.CONFIRMED,
            Booking.payment_status == PaymentStatus.PAID,
        )
        .first()
    )
    return confirmed is not None


def settle_checkout(payment_id: int, booking_ids=None, stripe_session_id=None, payment_intent_id=None, now=None):
    """Confirm every hold covered by a paid checkout, or none of them."""
    now = now or utcnow()
    cfg = current_app.config

    payment = db.session.get(Payment, payment_id)
    if payment is None:
        logger.warning("Settlement for unknown payment %s ignored", payment_id)
        return SettlementOutcome(REJECTED, payment_id, reason="PAYMENT_NOT_FOUND")
    booking_ids = [int(b) for b in (booking_ids or payment.booking_ids)]
    customer_id = payment.user_id

    platform_fee_total = 0
    try:
        with atomic(serializable=True, timeout_seconds=cfg.get("TRANSACTION_TIMEOUT_SECONDS")):
            if _already_settled(payment_id, booking_ids):
                raise _AlreadySettled()

            claimed = (
                Payment.query
                .filter(Payment.id == payment_id, Payment.status != PaymentRecordStatus.PAID)
                .update(
                    {
                        Payment.status: PaymentRecordStatus.PAID,
                        Payment.paid_at: now,
                        Payment.failure_reason: None,
                        Payment.stripe_session_id: stripe_session_id or Payment.stripe_session_id,
                        Payment.payment_intent_id: payment_intent_id or Payment.payment_intent_id,
                    },
                    synchronize_session=False,
                )
            )
            if claimed != 1:
                raise _AlreadySettled()

            for booking_id in booking_ids:
                booking = db.session.get(Booking, booking_id)
                if booking is None or booking.user_id != customer_id:
                    raise HoldExpired(f"Booking {booking_id} expired or not found")

                rate = commission_rate_for(booking.business_id)
                fee = percent_of(booking.total_amount, rate)

                # only a hold that is still live may be confirmed; the reaper
                # deleting it first leaves zero rows here
                updated = (
                    Booking.query
                    .filter(
                        Booking.id == booking_id,
                        Booking.status == BookingStatus.PENDING_PAYMENT,
                        Booking.payment_status == PaymentStatus.PENDING,
                        Booking.expires_at > now,
                    )
                    .update(
                        {
                            Booking.status: BookingStatus.CONFIRMED,
                            Booking.payment_status: PaymentStatus.PAID,
                            Booking.expires_at: None,
                            Booking.payment_link: None,
                            Booking.platform_fee: fee,
                            Booking.provider_earnings: booking.total_amount - fee,
                            Booking.payment_id: payment_id,
                        },
                        synchronize_session=False,
                    )
                )
                if updated != 1:
                    raise HoldExpired(f"Booking {booking_id} expired or not found")
                platform_fee_total += fee

            cart_ids = payment.cart_ids
            if cart_ids:
                (
                    CartItem.query
                    .filter(CartItem.id.in_(cart_ids), CartItem.user_id == customer_id)
                    .delete(synchronize_session=False)
                )
            purge_stale_payments(now, user_id=customer_id, exclude_payment_id=payment_id)
    except _AlreadySettled:
        logger.info("Duplicate settlement for payment %s skipped", payment_id)
        log_event(SettlementSkipped(payment_id=payment_id, reason="ALREADY_PAID"), entity="payment", entity_id=payment_id)
        return SettlementOutcome(DUPLICATE, payment_id, booking_ids)
    except HoldExpired as exc:
        _reject(payment_id, customer_id, exc, stripe_session_id, payment_intent_id)
        return SettlementOutcome(REJECTED, payment_id, booking_ids, reason=exc.code)

    log_event(
        PaymentSettled(
            payment_id=payment_id,
            booking_ids=booking_ids,
            platform_fee_total=platform_fee_total,
            stripe_session_id=stripe_session_id,
        ),
        user_id=customer_id,
        entity="payment",
        entity_id=payment_id,
    )
    logger.info("Payment %s settled, %d booking(s) confirmed", payment_id, len(booking_ids))
    _notify_confirmed(customer_id, booking_ids)
    return SettlementOutcome(SETTLED, payment_id, booking_ids)


def _reject(payment_id, customer_id, exc, stripe_session_id, payment_intent_id):
    """
    The hold lapsed before the money arrived. Nothing is confirmed; the payment
    is flagged so support can refund out of band.
    """
    logger.warning("Settlement for payment %s rejected: %s", payment_id, exc.message)
    with atomic():
        (
            Payment.query
            .filter(Payment.id == payment_id, Payment.status == PaymentRecordStatus.PENDING)
            .update(
                {
                    Payment.status: PaymentRecordStatus.FAILED,
                    Payment.failure_reason: "HOLD_EXPIRED",
                    Payment.stripe_session_id: stripe_session_id or Payment.stripe_session_id,
                    Payment.payment_intent_id: payment_intent_id or Payment.payment_intent_id,
                },
                synchronize_session=False,
            )
        )
    log_event(
        SettlementRejected(
            payment_id=payment_id,
            reason=exc.code,
            stripe_session_id=stripe_session_id,
            payment_intent_id=payment_intent_id,
        ),
        user_id=customer_id,
        entity="payment",
        entity_id=payment_id,
    )
    notify(customer_id, "Booking Not Confirmed", HoldExpired.default_message)


def _notify_confirmed(customer_id, booking_ids):
    bookings = Booking.query.filter(Booking.id.in_(booking_ids)).all()
    if not bookings:
        return
    names = ", ".join(sorted({b.service.name for b in bookings if b.service}))
    business = db.session.get(BusinessProfile, bookings[0].business_id)
    provider_id = business.owner_user_id if business else None

    notify(customer_id, "Booking Confirmed", f"Your booking for {names} has been confirmed.", sender_id=provider_id)
    notify(provider_id, "New Booking Received", f"New booking for {names}.", sender_id=customer_id)

    staff_ids = {
        a.staff_id
        for a in StaffAssignment.query.filter(
            StaffAssignment.booking_id.in_(booking_ids),
            StaffAssignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES),
        ).all()
    }
    for staff_id in staff_ids:
        notify(staff_id, "Booking Confirmed", f"A booking you are assigned to ({names}) is now paid.", sender_id=provider_id)


def mark_payment_failed(payment_id: int, reason: str = "PAYMENT_FAILED", now=None) -> bool:
    """
    Gateway reported the charge failed (or the checkout expired). Holds are
    left for the reaper; nothing is deleted here.
    """
    now = now or utcnow()
    payment = db.session.get(Payment, payment_id)
    if payment is None:
        logger.warning("Failure event for unknown payment %s ignored", payment_id)
        return False
    customer_id = payment.user_id

    with atomic():
        changed = (
            Payment.query
            .filter(Payment.id == payment_id, Payment.status == PaymentRecordStatus.PENDING)
            .update(
                {Payment.status: PaymentRecordStatus.FAILED, Payment.failure_reason: reason},
                synchronize_session=False,
            )
        )
        purge_stale_payments(now, user_id=customer_id, exclude_payment_id=payment_id)

    if not changed:
        logger.info("Failure event for payment %s skipped, status already final", payment_id)
        return False

    log_event(PaymentFailed(payment_id=payment_id, reason=reason), user_id=customer_id, entity="payment", entity_id=payment_id)
    notify(
        customer_id,
        "Payment Failed",
        "Your payment did not go through. Your held slots will be released shortly; you can book again.",
    )
    return True
