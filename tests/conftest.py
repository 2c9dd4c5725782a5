import hashlib
import hmac
import itertools
import json
import time
from datetime import date, datetime, timedelta

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.business import BusinessProfile, ProviderPlan, ProviderSubscription
from models.cart import Address, CartItem
from models.service import Service
from models.slot import Slot
from models.user import Role, User
from security.password import hash_password
from services import gateway
from utils.seed import seed_roles

# 08:00 UTC on the day of the visit; slots below are later that day
NOW = datetime(2030, 1, 15, 8, 0)
VISIT_DAY = date(2030, 1, 15)
PASSWORD = "correct horse battery"


class FakeGateway:
    """Stands in for the Stripe calls made through services.gateway."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.sessions = []
        self.refunds = []
        self.subscriptions = {}
        self.fail_checkout = False
        self.fail_refund = False
        self.refund_status = "pending"

    def create_checkout_session(self, line_items, metadata, customer_email=None):
        if self.fail_checkout:
            raise gateway.ExternalGatewayError("stripe is down")
        n = next(self._ids)
        session_id = f"cs_test_{n}"
        self.sessions.append({"id": session_id, "line_items": line_items, "metadata": metadata})
        return session_id, f"https://checkout.stripe.test/{session_id}"

    def create_refund(self, payment_intent_id, amount, idempotency_key, metadata=None):
        if self.fail_refund:
            raise gateway.ExternalGatewayError("refund failed")
        # same key, same refund, like the real API
        for r in self.refunds:
            if r["idempotency_key"] == idempotency_key:
                return {"id": r["id"], "status": self.refund_status}
        refund = {
            "id": f"re_test_{next(self._ids)}",
            "payment_intent": payment_intent_id,
            "amount": amount,
            "idempotency_key": idempotency_key,
        }
        self.refunds.append(refund)
        return {"id": refund["id"], "status": self.refund_status}

    def retrieve_subscription(self, subscription_id):
        return self.subscriptions[subscription_id]


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        seed_roles()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def fake_gateway(monkeypatch):
    fake = FakeGateway()
    monkeypatch.setattr(gateway, "create_checkout_session", fake.create_checkout_session)
    monkeypatch.setattr(gateway, "create_refund", fake.create_refund)
    monkeypatch.setattr(gateway, "retrieve_subscription", fake.retrieve_subscription)
    return fake


@pytest.fixture(autouse=True)
def no_email(monkeypatch):
    sent = []
    monkeypatch.setattr("services.notifier.send_email", lambda to, subject, body: (sent.append(to) or (True, None)))
    return sent


# ---------- factories ----------

def make_user(email, *roles, password=PASSWORD):
    user = User(email=email, password_hash=hash_password(password), full_name=email.split("@")[0])
    for name in roles:
        user.roles.append(Role.query.filter_by(name=name).one())
    db.session.add(user)
    db.session.commit()
    return user


def make_business(owner, name="Sparkle Cleaning"):
    business = BusinessProfile(owner_user_id=owner.id, name=name, contact_email=owner.email)
    db.session.add(business)
    db.session.commit()
    return business


def make_service(business, name="Deep Clean", price=1000, capacity=1):
    service = Service(business_id=business.id, name=name, price=price, total_booking_allow=capacity)
    db.session.add(service)
    db.session.commit()
    return service


def make_slot(business, time_label="6:00 PM"):
    slot = Slot(business_id=business.id, time=time_label)
    db.session.add(slot)
    db.session.commit()
    return slot


def make_address(user):
    address = Address(user_id=user.id, street="12 MG Road", city="Pune", state="MH", postal_code="411001")
    db.session.add(address)
    db.session.commit()
    return address


def make_cart_item(user, service, slot, day=VISIT_DAY):
    item = CartItem(user_id=user.id, business_id=service.business_id, service_id=service.id, slot_id=slot.id, date=day)
    db.session.add(item)
    db.session.commit()
    return item


def make_plan_subscription(provider, commission_rate, status="active", price_id="price_pro"):
    plan = ProviderPlan(name=f"plan-{price_id}", commission_rate=commission_rate, stripe_price_id=price_id)
    db.session.add(plan)
    db.session.flush()
    db.session.add(ProviderSubscription(user_id=provider.id, plan_id=plan.id, status=status))
    db.session.commit()
    return plan


class World:
    """One business with a single-seat service, plus a customer, a staff member and an address."""

    def __init__(self):
        self.customer = make_user("asha@example.com", "CUSTOMER")
        self.provider = make_user("owner@example.com", "PROVIDER")
        self.staff = make_user("ravi@example.com", "STAFF")
        self.business = make_business(self.provider)
        self.service = make_service(self.business)
        self.slot = make_slot(self.business, "6:00 PM")
        self.address = make_address(self.customer)

    def cart(self, user=None, service=None, slot=None, day=VISIT_DAY):
        return make_cart_item(user or self.customer, service or self.service, slot or self.slot, day)


@pytest.fixture
def world(app):
    return World()


# ---------- flow helpers ----------

def reserve_one(world, now=NOW, user=None, address=None, day=VISIT_DAY):
    from services.reservations import reserve

    user = user or world.customer
    address = address or (world.address if user is world.customer else make_address(user))
    item = world.cart(user=user, day=day)
    return reserve(user.id, address.id, [item.id], now=now)


def confirmed_booking(world, reserved_at=NOW, day=VISIT_DAY):
    """Reserve and settle one booking; returns its id."""
    from services.settlement import settle_checkout

    result = reserve_one(world, now=reserved_at, day=day)
    settle_checkout(result.payment_id, payment_intent_id="pi_test_1", now=reserved_at + timedelta(minutes=1))
    return result.booking_ids[0]


def signed_webhook(payload: dict, secret=TestConfig.STRIPE_WEBHOOK_SECRET):
    """Body and Stripe-Signature header the way Stripe signs them."""
    body = json.dumps(payload)
    ts = int(time.time())
    sig = hmac.new(secret.encode("utf-8"), f"{ts}.{body}".encode("utf-8"), hashlib.sha256).hexdigest()
    return body, f"t={ts},v1={sig}"


def login(client, email, password=PASSWORD):
    resp = client.post("/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.get_json()
    return {"X-CSRF-Token": client.get_cookie("csrf_token").value}
