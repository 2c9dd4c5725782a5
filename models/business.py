from utils.clock import utcnow
from models.db import db

class BusinessProfile(db.Model):
    __tablename__ = "business_profiles"

    id = db.Column(db.Integer, primary_key=True)
    owner_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)
    name = db.Column(db.String(160), nullable=False)
    contact_email = db.Column(db.String(255), nullable=True)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)


class ProviderPlan(db.Model):
    __tablename__ = "provider_plans"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(60), nullable=False, unique=True)
    commission_rate = db.Column(db.Float, nullable=False, default=10)  # percent
    stripe_price_id = db.Column(db.String(255), nullable=True, unique=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)


class ProviderSubscription(db.Model):
    __tablename__ = "provider_subscriptions"

    ACTIVE_STATUSES = ("active", "trialing")

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("provider_plans.id"), nullable=False)

    stripe_subscription_id = db.Column(db.String(255), nullable=True, unique=True)
    # mirrors the gateway subscription status (active, trialing, past_due, canceled...)
    status = db.Column(db.String(30), nullable=False, default="active")
    current_period_end = db.Column(db.DateTime, nullable=True)

    plan = db.relationship("ProviderPlan")
