from utils.clock import utcnow
from models.db import db
from models.enums import AssignmentStatus, EarningStatus, PayType

class StaffAssignment(db.Model):
    __tablename__ = "staff_assignments"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, index=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    assigned_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    status = db.Column(
        db.Enum(AssignmentStatus, native_enum=False, length=20),
        nullable=False,
        default=AssignmentStatus.PENDING,
    )
    pay_type = db.Column(db.Enum(PayType, native_enum=False, length=20), nullable=True)
    pay_value = db.Column(db.Float, nullable=True)  # amount for FIXED, percent for PERCENTAGE

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    responded_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        # at most one PENDING/ACCEPTED assignment per booking
        db.Index(
            "uq_assignment_active_booking",
            "booking_id",
            unique=True,
            postgresql_where=db.text("status IN ('PENDING', 'ACCEPTED')"),
            sqlite_where=db.text("status IN ('PENDING', 'ACCEPTED')"),
        ),
    )


class StaffEarning(db.Model):
    __tablename__ = "staff_earnings"

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, unique=True)
    business_id = db.Column(db.Integer, db.ForeignKey("business_profiles.id"), nullable=False)

    total_amount = db.Column(db.Integer, nullable=False)
    staff_share = db.Column(db.Integer, nullable=False)
    business_share = db.Column(db.Integer, nullable=False)

    status = db.Column(
        db.Enum(EarningStatus, native_enum=False, length=20),
        nullable=False,
        default=EarningStatus.PENDING,
    )
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
