from datetime import timedelta

import pytest

from conftest import NOW, VISIT_DAY, make_address, make_business, make_cart_item, make_service, make_slot, make_user, reserve_one
from models import db
from models.booking import Booking
from models.enums import BookingStatus, PaymentRecordStatus, PaymentStatus
from models.payment import Payment
from services import slot_ledger
from services.errors import (
    BelowMinimum,
    CapacityExceeded,
    CrossBusinessCheckout,
    DuplicateBooking,
    ExternalGatewayError,
    NotFound,
    ValidationError,
)
from services.reservations import pending_holds, reserve


def test_reserve_places_hold_and_payment(world, fake_gateway):
    result = reserve_one(world)

    booking = db.session.get(Booking, result.booking_ids[0])
    assert booking.status == BookingStatus.PENDING_PAYMENT
    assert booking.payment_status == PaymentStatus.PENDING
    assert booking.expires_at == NOW + timedelta(minutes=5)
    assert booking.total_amount == 1000
    assert booking.payment_link == result.checkout_url

    payment = db.session.get(Payment, result.payment_id)
    assert payment.status == PaymentRecordStatus.PENDING
    assert payment.amount == 1000
    assert payment.booking_ids == result.booking_ids
    assert payment.stripe_session_id == fake_gateway.sessions[0]["id"]
    assert fake_gateway.sessions[0]["metadata"]["payment_id"] == str(result.payment_id)


def test_second_customer_sees_slot_full_while_hold_is_live(world):
    reserve_one(world)
    other = make_user("neha@example.com", "CUSTOMER")

    with pytest.raises(CapacityExceeded) as exc:
        reserve_one(world, user=other, now=NOW + timedelta(minutes=1))
    assert exc.value.retryable
    assert "no longer available" in exc.value.message


def test_expired_hold_frees_the_seat(world):
    reserve_one(world)
    other = make_user("neha@example.com", "CUSTOMER")

    result = reserve_one(world, user=other, now=NOW + timedelta(minutes=6))
    assert len(result.booking_ids) == 1


def test_unlimited_service_never_fills(world):
    world.service.total_booking_allow = -1
    db.session.commit()
    for i in range(3):
        user = make_user(f"c{i}@example.com", "CUSTOMER")
        reserve_one(world, user=user)
    assert slot_ledger.remaining(world.service, world.slot.id, VISIT_DAY, NOW) is None
    assert slot_ledger.occupancy(world.service.id, world.slot.id, VISIT_DAY, NOW) == 3


def test_multi_item_checkout_is_all_or_nothing(world):
    evening = make_slot(world.business, "7:00 PM")
    other = make_user("neha@example.com", "CUSTOMER")
    # someone else already holds the 7 PM seat
    reserve(other.id, make_address(other).id, [make_cart_item(other, world.service, evening).id], now=NOW)

    first = world.cart()
    second = world.cart(slot=evening)
    with pytest.raises(CapacityExceeded):
        reserve(world.customer.id, world.address.id, [first.id, second.id], now=NOW)

    assert Booking.query.filter_by(user_id=world.customer.id).count() == 0
    assert Payment.query.filter_by(user_id=world.customer.id).count() == 0


def test_cross_business_cart_rejected(world):
    owner2 = make_user("other-owner@example.com", "PROVIDER")
    business2 = make_business(owner2, name="Shine Bros")
    service2 = make_service(business2, name="Window Wash", price=500)
    slot2 = make_slot(business2, "10:00 AM")

    a = world.cart()
    b = make_cart_item(world.customer, service2, slot2)
    with pytest.raises(CrossBusinessCheckout) as exc:
        reserve(world.customer.id, world.address.id, [a.id, b.id], now=NOW)
    assert exc.value.code == "CROSS_BUSINESS"
    assert Booking.query.count() == 0


def test_below_minimum_rejected(world):
    cheap = make_service(world.business, name="Dusting", price=40)
    item = world.cart(service=cheap)
    with pytest.raises(BelowMinimum):
        reserve(world.customer.id, world.address.id, [item.id], now=NOW)


def test_duplicate_booking_rejected(world):
    world.service.total_booking_allow = 5
    db.session.commit()
    reserve_one(world)
    with pytest.raises(DuplicateBooking):
        reserve_one(world, now=NOW + timedelta(minutes=1))


def test_own_lapsed_hold_does_not_block_retry(world):
    first = reserve_one(world)
    result = reserve_one(world, now=NOW + timedelta(minutes=10))
    assert Booking.query.filter_by(user_id=world.customer.id).count() == 1
    # the payment behind the lapsed hold goes with it
    assert Payment.query.filter_by(id=first.payment_id).first() is None
    assert [p.id for p in Payment.query.all()] == [result.payment_id]
    assert db.session.get(Booking, result.booking_ids[0]).status == BookingStatus.PENDING_PAYMENT


def test_validation_errors(world):
    with pytest.raises(ValidationError):
        reserve(world.customer.id, world.address.id, [], now=NOW)
    with pytest.raises(NotFound):
        reserve(world.customer.id, 9999, [world.cart().id], now=NOW)
    with pytest.raises(ValidationError):
        reserve(world.customer.id, world.address.id, [424242], now=NOW)


def test_gateway_failure_releases_holds(world, fake_gateway):
    fake_gateway.fail_checkout = True
    with pytest.raises(ExternalGatewayError):
        reserve_one(world)

    assert Booking.query.count() == 0
    payment = Payment.query.one()
    assert payment.status == PaymentRecordStatus.FAILED
    assert payment.failure_reason == "CHECKOUT_FAILED"


def test_pending_holds_lists_only_live_holds(world):
    result = reserve_one(world)

    rows = pending_holds(world.customer.id, now=NOW + timedelta(minutes=2))
    assert [r["id"] for r in rows] == result.booking_ids
    assert rows[0]["seconds_left"] == 180
    assert rows[0]["seats_left"] == 0

    assert pending_holds(world.customer.id, now=NOW + timedelta(minutes=6)) == []


def test_pending_holds_report_seats_left(world):
    world.service.total_booking_allow = 3
    db.session.commit()
    reserve_one(world)
    reserve_one(world, user=make_user("neha@example.com", "CUSTOMER"))

    rows = pending_holds(world.customer.id, now=NOW + timedelta(minutes=1))
    assert rows[0]["seats_left"] == 1

    world.service.total_booking_allow = -1
    db.session.commit()
    assert pending_holds(world.customer.id, now=NOW + timedelta(minutes=1))[0]["seats_left"] is None
