"""
Checkout: turn cart items into short-lived holds plus one payment record,
then hand the payer a gateway checkout link.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List

from flask import current_app
from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError

from models import db
from models.booking import Booking
from models.cart import Address, CartItem
from models.enums import BookingStatus, PaymentRecordStatus, PaymentStatus
from models.payment import Payment
from models.user import User
from services import gateway, slot_ledger
from services.errors import (
    BelowMinimum,
    CrossBusinessCheckout,
    DuplicateBooking,
    ExternalGatewayError,
    NotFound,
    ValidationError,
)
from services.reaper import purge_stale_payments
from utils.audit import HoldsPlaced, log_event
from utils.clock import utcnow
from utils.transactions import atomic

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    checkout_url: str
    payment_id: int
    booking_ids: List[int] = field(default_factory=list)
    expires_at: datetime = None

    def to_dict(self):
        return {
            "checkout_url": self.checkout_url,
            "payment_id": self.payment_id,
            "booking_ids": self.booking_ids,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


def _same_item(item):
    return and_(
        Booking.service_id == item.service_id,
        Booking.slot_id == item.slot_id,
        Booking.date == item.date,
    )


def _load_cart(customer_id, cart_item_ids):
    ids = {int(i) for i in cart_item_ids}
    items = (
        CartItem.query
        .filter(CartItem.id.in_(ids), CartItem.user_id == customer_id)
        .order_by(CartItem.id.asc())
        .all()
    )
    if len(items) != len(ids):
        raise ValidationError("Invalid cart items")

    if len({i.business_id for i in items}) > 1:
        raise CrossBusinessCheckout()

    seen = set()
    for item in items:
        if item.service is None or not item.service.is_active or item.service.business_id != item.business_id:
            raise ValidationError(f"Service for cart item {item.id} is not available")
        if item.slot is None or not item.slot.is_active or item.slot.business_id != item.business_id:
            raise ValidationError(f"Slot for cart item {item.id} is not available")
        key = (item.service_id, item.slot_id, item.date)
        if key in seen:
            raise DuplicateBooking("The cart contains the same service, slot and date twice")
        seen.add(key)
    return items


def _release_lapsed_holds(customer_id, items, now):
    """
    The customer's own lapsed holds on these exact items would otherwise block
    a retry until the reaper runs.
    """
    return (
        Booking.query
        .filter(
            Booking.user_id == customer_id,
            Booking.status == BookingStatus.PENDING_PAYMENT,
            Booking.expires_at <= now,
            or_(*[_same_item(i) for i in items]),
        )
        .delete(synchronize_session=False)
    )


def _find_existing(customer_id, items):
    return (
        Booking.query
        .filter(
            Booking.user_id == customer_id,
            Booking.status != BookingStatus.CANCELLED,
            or_(*[_same_item(i) for i in items]),
        )
        .first()
    )


def reserve(customer_id: int, address_id: int, cart_item_ids, now=None) -> CheckoutResult:
    """
    All-or-nothing: every item gets a hold or none does. Capacity is re-checked
    per item inside one serializable transaction.
    """
    now = now or utcnow()
    cfg = current_app.config

    if not cart_item_ids:
        raise ValidationError("Cart is empty")
    if not address_id:
        raise ValidationError("Address required")

    address = Address.query.filter_by(id=address_id, user_id=customer_id).first()
    if not address:
        raise NotFound("Address not found")

    items = _load_cart(customer_id, cart_item_ids)
    total = sum(i.service.price for i in items)
    if total < cfg.get("MIN_CHECKOUT_AMOUNT", 0):
        raise BelowMinimum(f"Order total {total} is below the minimum of {cfg.get('MIN_CHECKOUT_AMOUNT')}")

    hold_until = now + timedelta(minutes=cfg.get("HOLD_MINUTES", 5))
    cart_ids = [i.id for i in items]

    try:
        with atomic(serializable=True, timeout_seconds=cfg.get("TRANSACTION_TIMEOUT_SECONDS")):
            _release_lapsed_holds(customer_id, items, now)
            purge_stale_payments(now, user_id=customer_id)

            existing = _find_existing(customer_id, items)
            if existing:
                raise DuplicateBooking(f"You already booked a slot for {existing.date.isoformat()}")

            bookings = []
            for item in items:
                service = slot_ledger.lock_service(item.service_id)
                slot_ledger.admit(service, item.slot_id, item.date, now, slot_label=item.slot.time)

                booking = Booking(
                    user_id=customer_id,
                    business_id=item.business_id,
                    service_id=item.service_id,
                    slot_id=item.slot_id,
                    address_id=address_id,
                    date=item.date,
                    total_amount=service.price,
                    status=BookingStatus.PENDING_PAYMENT,
                    payment_status=PaymentStatus.PENDING,
                    expires_at=hold_until,
                )
                db.session.add(booking)
                db.session.flush()
                bookings.append(booking)

            booking_ids = [b.id for b in bookings]
            payment = Payment(
                user_id=customer_id,
                address_id=address_id,
                amount=total,
                currency=cfg.get("CURRENCY", "inr"),
                status=PaymentRecordStatus.PENDING,
                booking_ids_json=json.dumps(booking_ids),
                cart_ids_json=json.dumps(cart_ids),
            )
            db.session.add(payment)
            db.session.flush()
            for booking in bookings:
                booking.payment_id = payment.id
            payment_id = payment.id
            line_items = [(i.service.name, i.service.price) for i in items]
    except IntegrityError as exc:
        # uq_booking_active_item tripped by a concurrent checkout of the same item
        raise DuplicateBooking() from exc

    customer = db.session.get(User, customer_id)
    metadata = {
        "payment_id": str(payment_id),
        "user_id": str(customer_id),
        "address_id": str(address_id),
        "booking_ids": json.dumps(booking_ids),
        "cart_ids": json.dumps(cart_ids),
    }
    try:
        session_id, url = gateway.create_checkout_session(
            line_items, metadata, customer_email=customer.email if customer else None
        )
    except ExternalGatewayError:
        _release_failed_checkout(payment_id, booking_ids)
        raise

    payment = db.session.get(Payment, payment_id)
    payment.stripe_session_id = session_id
    (
        Booking.query
        .filter(Booking.id.in_(booking_ids), Booking.status == BookingStatus.PENDING_PAYMENT)
        .update({Booking.payment_link: url}, synchronize_session=False)
    )
    db.session.commit()

    log_event(
        HoldsPlaced(payment_id=payment_id, booking_ids=booking_ids, amount=total, expires_at=hold_until.isoformat()),
        user_id=customer_id,
        entity="payment",
        entity_id=payment_id,
    )
    logger.info("Placed %d hold(s) for user %s under payment %s", len(booking_ids), customer_id, payment_id)
    return CheckoutResult(checkout_url=url, payment_id=payment_id, booking_ids=booking_ids, expires_at=hold_until)


def _release_failed_checkout(payment_id, booking_ids):
    """The payer never got a checkout link, so give the seats back right away."""
    with atomic():
        (
            Booking.query
            .filter(Booking.id.in_(booking_ids), Booking.status == BookingStatus.PENDING_PAYMENT)
            .delete(synchronize_session=False)
        )
        (
            Payment.query
            .filter(Payment.id == payment_id, Payment.status == PaymentRecordStatus.PENDING)
            .update(
                {Payment.status: PaymentRecordStatus.FAILED, Payment.failure_reason: "CHECKOUT_FAILED"},
                synchronize_session=False,
            )
        )
    logger.warning("Checkout session failed for payment %s; released %d hold(s)", payment_id, len(booking_ids))


def pending_holds(customer_id: int, now=None):
    """Unexpired holds the customer can still pay for."""
    now = now or utcnow()
    rows = (
        Booking.query
        .filter(
            Booking.user_id == customer_id,
            Booking.status == BookingStatus.PENDING_PAYMENT,
            Booking.payment_status == PaymentStatus.PENDING,
            Booking.expires_at > now,
            Booking.payment_link.isnot(None),
        )
        .order_by(Booking.created_at.desc())
        .all()
    )
    return [
        {
            "id": b.id,
            "service_id": b.service_id,
            "slot_id": b.slot_id,
            "date": b.date.isoformat(),
            "total_amount": b.total_amount,
            "payment_link": b.payment_link,
            "expires_at": b.expires_at.isoformat(),
            "seconds_left": max(int((b.expires_at - now).total_seconds()), 0),
            "seats_left": slot_ledger.remaining(b.service, b.slot_id, b.date, now),
        }
        for b in rows
    ]
