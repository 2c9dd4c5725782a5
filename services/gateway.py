"""Thin wrapper around the Stripe SDK so the booking core never imports stripe directly."""
import json
import logging

import stripe
from flask import current_app

from services.errors import ExternalGatewayError, ValidationError

logger = logging.getLogger(__name__)

# INR and friends are charged in the smallest unit (paise)
MINOR_UNITS = 100


class InvalidSignature(ValidationError):
    code = "INVALID_SIGNATURE"
    default_message = "Invalid webhook signature"


def _configure():
    key = current_app.config.get("STRIPE_SECRET_KEY")
    if not key:
        raise ExternalGatewayError("Stripe secret key missing (STRIPE_SECRET_KEY)")
    stripe.api_key = key


def create_checkout_session(line_items, metadata, customer_email=None):
    """
    line_items: list of (name, amount) in whole currency units.
    Returns (session_id, checkout_url).
    """
    _configure()
    success_url = current_app.config.get("STRIPE_SUCCESS_URL")
    cancel_url = current_app.config.get("STRIPE_CANCEL_URL")
    if not success_url or not cancel_url:
        raise ExternalGatewayError("Stripe success/cancel URLs not configured")

    currency = current_app.config.get("CURRENCY", "inr")
    separator = "&" if "?" in cancel_url else "?"
    try:
        session = stripe.checkout.Session.create(
            mode="payment",
            line_items=[
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": name},
                        "unit_amount": int(amount) * MINOR_UNITS,
                    },
                    "quantity": 1,
                }
                for name, amount in line_items
            ],
            customer_email=customer_email,
            success_url=f"{success_url}?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{cancel_url}{separator}payment_id={metadata.get('payment_id', '')}",
            metadata=metadata,
            # copied onto the intent so payment_intent.payment_failed can be matched
            payment_intent_data={"metadata": metadata},
        )
    except stripe.StripeError as exc:
        logger.exception("Stripe checkout session creation failed")
        raise ExternalGatewayError(str(exc)) from exc

    return session["id"], session["url"]


def create_refund(payment_intent_id: str, amount: int, idempotency_key: str, metadata=None):
    """Returns {"id": ..., "status": ...} from the gateway's immediate response."""
    _configure()
    try:
        refund = stripe.Refund.create(
            payment_intent=payment_intent_id,
            amount=int(amount) * MINOR_UNITS,
            metadata=metadata or {},
            idempotency_key=idempotency_key,
        )
    except stripe.StripeError as exc:
        logger.exception("Stripe refund failed for %s", payment_intent_id)
        raise ExternalGatewayError(str(exc)) from exc
    return {"id": refund["id"], "status": refund["status"]}


def retrieve_subscription(subscription_id: str):
    """Returns {"id", "status", "price_id", "current_period_end"} for a provider subscription."""
    _configure()
    try:
        sub = stripe.Subscription.retrieve(subscription_id)
    except stripe.StripeError as exc:
        logger.exception("Stripe subscription lookup failed for %s", subscription_id)
        raise ExternalGatewayError(str(exc)) from exc

    items = (sub.get("items") or {}).get("data") or []
    price = items[0].get("price") if items else None
    return {
        "id": sub["id"],
        "status": sub.get("status"),
        "price_id": price.get("id") if price else None,
        "current_period_end": sub.get("current_period_end"),
    }


def verify_webhook(payload: bytes, sig_header: str) -> dict:
    """Check the Stripe-Signature header before the body is trusted, then parse it."""
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not sig_header:
        raise InvalidSignature("Missing Stripe-Signature header")
    try:
        text = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(text, sig_header, secret, stripe.Webhook.DEFAULT_TOLERANCE)
    except (stripe.SignatureVerificationError, UnicodeDecodeError) as exc:
        raise InvalidSignature(str(exc)) from exc
    return json.loads(text)
