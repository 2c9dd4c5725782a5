from flask import Blueprint, request, jsonify, g

from security.rbac import require_roles
from services import tracking
from services.errors import ValidationError

staff_bp = Blueprint("staff", __name__)


def _assignment_json(a):
    return {
        "id": a.id,
        "booking_id": a.booking_id,
        "staff_id": a.staff_id,
        "status": a.status.value,
        "pay_type": a.pay_type.value if a.pay_type else None,
        "pay_value": a.pay_value,
    }


# ---------- PROVIDER: assign staff ----------
@staff_bp.post("/provider/bookings/<int:booking_id>/assign-staff")
@require_roles("PROVIDER")
def assign_staff(booking_id):
    data = request.get_json(silent=True) or {}
    try:
        staff_id = int(data.get("staff_id"))
    except (TypeError, ValueError):
        raise ValidationError("staff_id required")

    assignment = tracking.assign_staff(
        booking_id,
        g.user.id,
        staff_id,
        pay_type=data.get("pay_type"),
        pay_value=data.get("pay_value"),
    )
    return jsonify(_assignment_json(assignment)), 201


# ---------- STAFF: respond / progress ----------
@staff_bp.post("/staff/assignments/<int:assignment_id>/respond")
@require_roles("STAFF")
def respond(assignment_id):
    data = request.get_json(silent=True) or {}
    accept = data.get("accept")
    if not isinstance(accept, bool):
        raise ValidationError("accept must be true or false")
    assignment = tracking.respond_to_assignment(assignment_id, g.user.id, accept)
    return jsonify(_assignment_json(assignment)), 200


@staff_bp.post("/staff/bookings/<int:booking_id>/tracking")
@require_roles("STAFF")
def advance(booking_id):
    data = request.get_json(silent=True) or {}
    status = tracking.advance_tracking(
        booking_id,
        g.user.id,
        data.get("status"),
        early_start_reason=data.get("early_start_reason"),
    )
    return jsonify(booking_id=booking_id, tracking_status=status.value), 200


@staff_bp.post("/staff/availability")
@require_roles("STAFF")
def set_availability():
    data = request.get_json(silent=True) or {}
    available = data.get("available")
    if not isinstance(available, bool):
        raise ValidationError("available must be true or false")
    value = tracking.set_manual_availability(g.user.id, available)
    return jsonify(availability=value.value), 200
