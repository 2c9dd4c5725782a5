from utils.clock import utcnow
from models.db import db

UNLIMITED = -1

class Service(db.Model):
    __tablename__ = "services"

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("business_profiles.id"), nullable=False, index=True)

    name = db.Column(db.String(160), nullable=False)
    price = db.Column(db.Integer, nullable=False)  # whole currency units
    # max non-cancelled bookings per (slot, date); -1 means unlimited
    total_booking_allow = db.Column(db.Integer, nullable=False, default=1)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
