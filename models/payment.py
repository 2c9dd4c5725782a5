import json
from utils.clock import utcnow
from models.db import db
from models.enums import PaymentRecordStatus

class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    address_id = db.Column(db.Integer, db.ForeignKey("addresses.id"), nullable=True)

    provider = db.Column(db.String(20), nullable=False, default="STRIPE")
    amount = db.Column(db.Integer, nullable=False)   # whole currency units
    currency = db.Column(db.String(10), nullable=False, default="inr")

    status = db.Column(
        db.Enum(PaymentRecordStatus, native_enum=False, length=20),
        nullable=False,
        default=PaymentRecordStatus.PENDING,
    )
    failure_reason = db.Column(db.String(60), nullable=True)

    stripe_session_id = db.Column(db.String(255), nullable=True, unique=True, index=True)
    payment_intent_id = db.Column(db.String(255), nullable=True, index=True)

    booking_ids_json = db.Column(db.Text, nullable=False, default="[]")
    cart_ids_json = db.Column(db.Text, nullable=False, default="[]")

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    paid_at = db.Column(db.DateTime, nullable=True)

    @property
    def booking_ids(self):
        return json.loads(self.booking_ids_json or "[]")

    @property
    def cart_ids(self):
        return json.loads(self.cart_ids_json or "[]")
