from utils.clock import utcnow
from models.db import db

class Slot(db.Model):
    __tablename__ = "slots"

    id = db.Column(db.Integer, primary_key=True)

    business_id = db.Column(db.Integer, db.ForeignKey("business_profiles.id"), nullable=False, index=True)
    time = db.Column(db.String(20), nullable=False)  # locale string, e.g. "9:30 AM"
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        # Prevent duplicate slot times for same business
        db.UniqueConstraint("business_id", "time", name="uq_business_slot_time"),
    )
