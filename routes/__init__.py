from flask import Blueprint, jsonify

from routes.auth import auth_bp
from routes.booking import booking_bp
from routes.pay_pages import pay_pages_bp
from routes.staff import staff_bp
from routes.stripe_webhook import webhook_bp

health_bp = Blueprint("health", __name__)

@health_bp.get("/health")
def health():
    return jsonify(status="ok"), 200

__all__ = ["health_bp", "auth_bp", "booking_bp", "pay_pages_bp", "staff_bp", "webhook_bp"]
