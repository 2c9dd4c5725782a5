import json
from datetime import timedelta

from conftest import NOW, make_plan_subscription, make_user, reserve_one
from models import db
from models.audit_log import AuditLog
from models.booking import Booking
from models.cart import CartItem
from models.enums import BookingStatus, PaymentRecordStatus, PaymentStatus
from models.notification import Notification
from models.payment import Payment
from services.reaper import reclaim_expired_holds
from services.settlement import DUPLICATE, REJECTED, SETTLED, mark_payment_failed, settle_checkout


def test_settlement_confirms_and_splits(world):
    result = reserve_one(world)

    outcome = settle_checkout(result.payment_id, stripe_session_id="cs_test_1", payment_intent_id="pi_1", now=NOW + timedelta(minutes=2))
    assert outcome.status == SETTLED

    booking = db.session.get(Booking, result.booking_ids[0])
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_status == PaymentStatus.PAID
    assert booking.expires_at is None
    assert booking.platform_fee == 100
    assert booking.provider_earnings == 900

    payment = db.session.get(Payment, result.payment_id)
    assert payment.status == PaymentRecordStatus.PAID
    assert payment.payment_intent_id == "pi_1"
    assert CartItem.query.filter_by(user_id=world.customer.id).count() == 0

    titles = {n.title for n in Notification.query.all()}
    assert {"Booking Confirmed", "New Booking Received"} <= titles


def test_duplicate_delivery_is_a_no_op(world):
    result = reserve_one(world)
    first = settle_checkout(result.payment_id, now=NOW + timedelta(minutes=1))
    second = settle_checkout(result.payment_id, now=NOW + timedelta(minutes=2))

    assert first.status == SETTLED
    assert second.status == DUPLICATE
    assert Booking.query.filter_by(status=BookingStatus.CONFIRMED).count() == 1
    assert AuditLog.query.filter_by(action="PAYMENT_SETTLED").count() == 1
    assert AuditLog.query.filter_by(action="SETTLEMENT_SKIPPED").count() == 1


def test_settlement_after_hold_expired_is_rejected(world):
    result = reserve_one(world)

    outcome = settle_checkout(result.payment_id, payment_intent_id="pi_late", now=NOW + timedelta(minutes=6))
    assert outcome.status == REJECTED
    assert outcome.reason == "HOLD_EXPIRED"

    booking = db.session.get(Booking, result.booking_ids[0])
    assert booking.status == BookingStatus.PENDING_PAYMENT
    payment = db.session.get(Payment, result.payment_id)
    assert payment.status == PaymentRecordStatus.FAILED
    assert payment.failure_reason == "HOLD_EXPIRED"
    assert payment.payment_intent_id == "pi_late"

    row = AuditLog.query.filter_by(action="SETTLEMENT_REJECTED").one()
    assert json.loads(row.metadata_json)["payment_intent_id"] == "pi_late"


def test_settlement_after_reaper_deleted_hold_is_rejected(world):
    result = reserve_one(world)
    payment_id = result.payment_id
    assert reclaim_expired_holds(now=NOW + timedelta(minutes=6)) == 1
    # the purge took the pending payment record with it
    assert db.session.get(Payment, payment_id) is None

    outcome = settle_checkout(payment_id, now=NOW + timedelta(minutes=7))
    assert outcome.status == REJECTED
    assert Booking.query.filter_by(status=BookingStatus.CONFIRMED).count() == 0


def test_seat_taken_by_someone_else_after_expiry_is_not_double_booked(world):
    result = reserve_one(world)
    other = make_user("neha@example.com", "CUSTOMER")
    reserve_one(world, user=other, now=NOW + timedelta(minutes=6))

    outcome = settle_checkout(result.payment_id, now=NOW + timedelta(minutes=7))
    assert outcome.status == REJECTED
    assert Booking.query.filter_by(status=BookingStatus.CONFIRMED).count() == 0


def test_commission_follows_active_plan(world):
    make_plan_subscription(world.provider, commission_rate=5)
    result = reserve_one(world)
    settle_checkout(result.payment_id, now=NOW + timedelta(minutes=1))

    booking = db.session.get(Booking, result.booking_ids[0])
    assert booking.platform_fee == 50
    assert booking.provider_earnings == 950


def test_lapsed_plan_falls_back_to_default_commission(world):
    make_plan_subscription(world.provider, commission_rate=5, status="canceled")
    result = reserve_one(world)
    settle_checkout(result.payment_id, now=NOW + timedelta(minutes=1))

    assert db.session.get(Booking, result.booking_ids[0]).platform_fee == 100


def test_unknown_payment_is_rejected(app):
    outcome = settle_checkout(424242, now=NOW)
    assert outcome.status == REJECTED
    assert outcome.reason == "PAYMENT_NOT_FOUND"


def test_payment_failed_marks_record_and_keeps_holds(world):
    result = reserve_one(world)

    assert mark_payment_failed(result.payment_id, now=NOW + timedelta(minutes=1)) is True
    assert mark_payment_failed(result.payment_id, now=NOW + timedelta(minutes=1)) is False

    payment = db.session.get(Payment, result.payment_id)
    assert payment.status == PaymentRecordStatus.FAILED
    assert db.session.get(Booking, result.booking_ids[0]).status == BookingStatus.PENDING_PAYMENT


def test_failed_payment_cannot_be_settled_twice_but_paid_wins(world):
    result = reserve_one(world)
    settle_checkout(result.payment_id, now=NOW + timedelta(minutes=1))

    assert mark_payment_failed(result.payment_id) is False
    assert db.session.get(Payment, result.payment_id).status == PaymentRecordStatus.PAID
