from flask import Blueprint, request, jsonify, g

from models.booking import Booking
from security.rbac import require_roles
from services import cancellations, reservations
from services.errors import ValidationError
from utils.auth_context import login_required

booking_bp = Blueprint("booking", __name__, url_prefix="/bookings")


def _booking_json(b: Booking):
    return {
        "id": b.id,
        "business_id": b.business_id,
        "service_id": b.service_id,
        "service_name": b.service.name if b.service else None,
        "slot_id": b.slot_id,
        "slot_time": b.slot.time if b.slot else None,
        "date": b.date.isoformat(),
        "total_amount": b.total_amount,
        "status": b.status.value,
        "payment_status": b.payment_status.value,
        "tracking_status": b.tracking_status.value,
        "expires_at": b.expires_at.isoformat() if b.expires_at else None,
        "created_at": b.created_at.isoformat(),
    }


# ---------- CUSTOMER: checkout ----------
@booking_bp.post("/checkout")
@require_roles("CUSTOMER")
def checkout():
    data = request.get_json(silent=True) or {}
    cart_item_ids = data.get("cart_item_ids") or []
    if not isinstance(cart_item_ids, list):
        raise ValidationError("cart_item_ids must be a list")
    try:
        address_id = int(data.get("address_id") or 0)
    except (TypeError, ValueError):
        raise ValidationError("address_id must be an integer")

    result = reservations.reserve(g.user.id, address_id, cart_item_ids)
    return jsonify(result.to_dict()), 201


@booking_bp.get("/pending")
@login_required
def pending():
    return jsonify(reservations.pending_holds(g.user.id)), 200


@booking_bp.get("/me")
@login_required
def my_bookings():
    rows = (
        Booking.query
        .filter_by(user_id=g.user.id)
        .order_by(Booking.date.desc(), Booking.id.desc())
        .all()
    )
    return jsonify([_booking_json(b) for b in rows]), 200


# ---------- CUSTOMER: cancel ----------
@booking_bp.get("/<int:booking_id>/cancellation-preview")
@login_required
def cancellation_preview(booking_id):
    return jsonify(cancellations.preview(booking_id, g.user.id)), 200


@booking_bp.post("/<int:booking_id>/cancel")
@login_required
def cancel_booking(booking_id):
    data = request.get_json(silent=True) or {}
    result = cancellations.cancel(
        booking_id,
        g.user.id,
        reason=data.get("reason"),
        reason_type=data.get("reason_type"),
    )
    return jsonify(result.to_dict()), 200
