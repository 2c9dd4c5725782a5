import json
import logging

from flask import Blueprint, current_app, jsonify, request

from models.payment import Payment
from services import gateway
from services.cancellations import handle_refund_event
from services.errors import BookingError, ExternalGatewayError
from services.settlement import mark_payment_failed, settle_checkout
from services.subscriptions import activate_from_checkout, sync_from_event

logger = logging.getLogger(__name__)

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")


def _payment_for(obj):
    meta = obj.get("metadata") or {}
    payment_id = meta.get("payment_id")
    if payment_id:
        try:
            return int(payment_id)
        except (TypeError, ValueError):
            return None
    session_id = obj.get("id")
    if session_id:
        payment = Payment.query.filter_by(stripe_session_id=session_id).first()
        if payment:
            return payment.id
    return None


def _booking_ids(meta):
    raw = meta.get("booking_ids")
    if not raw:
        return None
    try:
        return [int(b) for b in json.loads(raw)]
    except (TypeError, ValueError):
        return None


def _on_checkout_completed(session):
    if session.get("mode") == "subscription":
        activate_from_checkout(session)
        return
    if session.get("payment_status") not in (None, "paid", "no_payment_required"):
        # delayed methods settle on checkout.session.async_payment_succeeded
        logger.info("Checkout %s completed but not yet paid", session.get("id"))
        return
    _settle(session)


def _settle(session):
    payment_id = _payment_for(session)
    if payment_id is None:
        logger.warning("Checkout %s has no payment record", session.get("id"))
        return
    settle_checkout(
        payment_id,
        booking_ids=_booking_ids(session.get("metadata") or {}),
        stripe_session_id=session.get("id"),
        payment_intent_id=session.get("payment_intent"),
    )


def _on_checkout_failed(session, reason):
    if session.get("mode") == "subscription":
        return
    payment_id = _payment_for(session)
    if payment_id is not None:
        mark_payment_failed(payment_id, reason=reason)


def _on_intent_failed(intent):
    meta = intent.get("metadata") or {}
    if not meta.get("payment_id"):
        logger.info("Failed intent %s carries no payment id", intent.get("id"))
        return
    mark_payment_failed(int(meta["payment_id"]), reason="PAYMENT_FAILED")


HANDLERS = {
    "checkout.session.completed": _on_checkout_completed,
    "checkout.session.async_payment_succeeded": _settle,
    "checkout.session.async_payment_failed": lambda obj: _on_checkout_failed(obj, "PAYMENT_FAILED"),
    "checkout.session.expired": lambda obj: _on_checkout_failed(obj, "CHECKOUT_EXPIRED"),
    "payment_intent.payment_failed": _on_intent_failed,
    "refund.updated": handle_refund_event,
    "charge.refund.updated": handle_refund_event,
    "customer.subscription.updated": sync_from_event,
    "customer.subscription.deleted": sync_from_event,
}


@webhook_bp.post("/stripe")
def stripe_webhook():
    if not current_app.config.get("STRIPE_WEBHOOK_SECRET"):
        return jsonify(error="Webhook secret not configured"), 500

    try:
        event = gateway.verify_webhook(request.get_data(), request.headers.get("Stripe-Signature"))
    except gateway.InvalidSignature as exc:
        logger.warning("Rejected webhook: %s", exc.message)
        return jsonify(error="Invalid webhook signature"), 400

    event_type = event.get("type")
    handler = HANDLERS.get(event_type)
    if handler is None:
        return jsonify(received=True), 200

    obj = (event.get("data") or {}).get("object") or {}
    try:
        handler(obj)
    except BookingError as exc:
        if exc.retryable or isinstance(exc, ExternalGatewayError):
            # non-2xx makes the gateway redeliver later
            logger.warning("Webhook %s (%s) deferred: %s", event.get("id"), event_type, exc.message)
            return jsonify(error=exc.message, code=exc.code), 503
        logger.error("Webhook %s (%s) not applied: %s", event.get("id"), event_type, exc.message)

    return jsonify(received=True), 200
