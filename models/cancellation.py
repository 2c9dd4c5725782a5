from utils.clock import utcnow
from models.db import db
from models.enums import CancellationReason, CancellationStatus, RefundStatus

class Cancellation(db.Model):
    __tablename__ = "cancellations"

    id = db.Column(db.Integer, primary_key=True)
    # one cancellation per booking, ever
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, unique=True)
    requested_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    reason = db.Column(db.String(500), nullable=True)
    reason_type = db.Column(db.Enum(CancellationReason, native_enum=False, length=30), nullable=False)

    refund_status = db.Column(db.Enum(RefundStatus, native_enum=False, length=20), nullable=False)
    refund_amount = db.Column(db.Integer, nullable=False, default=0)
    cancellation_fee = db.Column(db.Integer, nullable=False, default=0)
    fee_percentage = db.Column(db.Integer, nullable=False, default=0)
    hours_before_service = db.Column(db.Float, nullable=False)
    stripe_refund_id = db.Column(db.String(255), nullable=True, unique=True)

    status = db.Column(db.Enum(CancellationStatus, native_enum=False, length=20), nullable=False)

    requested_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    refunded_at = db.Column(db.DateTime, nullable=True)
