from utils.clock import utcnow
from models.db import db
from models.enums import BookingStatus, PaymentStatus, TrackingStatus

class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    business_id = db.Column(db.Integer, db.ForeignKey("business_profiles.id"), nullable=False, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False, index=True)
    slot_id = db.Column(db.Integer, db.ForeignKey("slots.id"), nullable=False, index=True)
    address_id = db.Column(db.Integer, db.ForeignKey("addresses.id"), nullable=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, index=True)
    date = db.Column(db.Date, nullable=False)

    total_amount = db.Column(db.Integer, nullable=False)

    status = db.Column(
        db.Enum(BookingStatus, native_enum=False, length=20),
        nullable=False,
        default=BookingStatus.PENDING_PAYMENT,
    )
    payment_status = db.Column(
        db.Enum(PaymentStatus, native_enum=False, length=20),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    # set while the seat is held for checkout, cleared once paid
    expires_at = db.Column(db.DateTime, nullable=True, index=True)
    payment_link = db.Column(db.String(1024), nullable=True)

    platform_fee = db.Column(db.Integer, nullable=False, default=0)
    provider_earnings = db.Column(db.Integer, nullable=False, default=0)

    tracking_status = db.Column(
        db.Enum(TrackingStatus, native_enum=False, length=30),
        nullable=False,
        default=TrackingStatus.NOT_STARTED,
    )
    early_start_reason = db.Column(db.String(255), nullable=True)
    reminder_sent_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    service = db.relationship("Service")
    slot = db.relationship("Slot")

    __table_args__ = (
        # A customer may hold only one live booking for the same service/slot/date
        db.Index(
            "uq_booking_active_item",
            "service_id", "slot_id", "date", "user_id",
            unique=True,
            postgresql_where=db.text("status <> 'CANCELLED'"),
            sqlite_where=db.text("status <> 'CANCELLED'"),
        ),
        db.Index("ix_bookings_capacity", "service_id", "slot_id", "date", "status"),
    )
