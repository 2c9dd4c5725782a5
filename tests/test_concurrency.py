import threading

import pytest

from app import create_app
from config import TestConfig
from conftest import NOW, World, make_address, make_cart_item, make_user
from models import db
from models.booking import Booking
from models.enums import BookingStatus
from services.errors import CapacityConflict
from services.reservations import reserve
from utils.seed import seed_roles


@pytest.fixture
def file_app(tmp_path):
    # separate connections per thread need a real file, not the shared in-memory db
    config = type(
        "FileConfig",
        (TestConfig,),
        {
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'race.db'}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30}},
        },
    )
    app = create_app(config)
    with app.app_context():
        db.create_all()
        seed_roles()
        yield app
        db.session.remove()
        db.drop_all()


def test_two_customers_racing_for_the_last_seat(file_app):
    world = World()
    carts = []
    for email in ("neha@example.com", "vikram@example.com"):
        user = make_user(email, "CUSTOMER")
        carts.append((user.id, make_address(user).id, make_cart_item(user, world.service, world.slot).id))
    service_id = world.service.id
    db.session.remove()

    barrier = threading.Barrier(len(carts))
    outcomes = []

    def attempt(user_id, address_id, item_id):
        with file_app.app_context():
            barrier.wait(5)
            try:
                reserve(user_id, address_id, [item_id], now=NOW)
                outcomes.append("ok")
            except CapacityConflict as exc:
                outcomes.append(exc.code)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=attempt, args=cart) for cart in carts]
    for t in threads:
        t.start()
    for t in threads:
        t.join(30)

    assert sorted(outcomes) in (["SLOT_FULL", "ok"], ["CONCURRENT_CONFLICT", "ok"])
    live = Booking.query.filter_by(service_id=service_id, status=BookingStatus.PENDING_PAYMENT).count()
    assert live == 1
