"""Keeps ProviderSubscription in step with the gateway; the active plan decides commission."""
import logging
from datetime import datetime, timezone

from models import db
from models.business import ProviderPlan, ProviderSubscription
from services import gateway
from services.notifier import notify
from utils.audit import SubscriptionSynced, log_event

logger = logging.getLogger(__name__)


def _period_end(ts):
    if not ts:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).replace(tzinfo=None)


def _price_id(subscription: dict):
    items = (subscription.get("items") or {}).get("data") or []
    price = items[0].get("price") if items else None
    return price.get("id") if price else None


def _upsert(user_id, plan, sub_id, status, period_end):
    row = ProviderSubscription.query.filter_by(user_id=user_id).first()
    if row is None:
        row = ProviderSubscription(user_id=user_id, plan_id=plan.id)
        db.session.add(row)
    row.plan_id = plan.id
    row.stripe_subscription_id = sub_id
    row.status = status
    row.current_period_end = period_end
    db.session.commit()

    log_event(
        SubscriptionSynced(plan_id=plan.id, status=status, stripe_subscription_id=sub_id),
        user_id=user_id,
        entity="provider_subscription",
        entity_id=row.id,
    )
    return row


def activate_from_checkout(session: dict):
    """checkout.session.completed with mode=subscription."""
    meta = session.get("metadata") or {}
    user_id = meta.get("user_id") or session.get("client_reference_id")
    if not user_id or meta.get("subscription_type", "PROVIDER") != "PROVIDER":
        logger.warning("Subscription checkout %s without provider metadata ignored", session.get("id"))
        return None
    if not session.get("subscription"):
        logger.warning("Subscription checkout %s has no subscription id", session.get("id"))
        return None

    sub = gateway.retrieve_subscription(session["subscription"])
    plan = ProviderPlan.query.filter_by(stripe_price_id=sub.get("price_id")).first()
    if plan is None:
        logger.error("No plan for price %s", sub.get("price_id"))
        return None

    row = _upsert(int(user_id), plan, sub["id"], sub.get("status") or "active", _period_end(sub.get("current_period_end")))
    if row.status in ProviderSubscription.ACTIVE_STATUSES:
        notify(row.user_id, "Subscription Activated", f"Your {plan.name} plan is now active.")
    return row


def sync_from_event(subscription: dict):
    """customer.subscription.updated / customer.subscription.deleted."""
    row = ProviderSubscription.query.filter_by(stripe_subscription_id=subscription.get("id")).first()
    if row is None:
        meta = subscription.get("metadata") or {}
        if meta.get("user_id"):
            row = ProviderSubscription.query.filter_by(user_id=int(meta["user_id"])).first()
    if row is None:
        logger.info("Subscription event %s does not match a provider", subscription.get("id"))
        return None

    plan = row.plan
    price_id = _price_id(subscription)
    if price_id and (plan is None or plan.stripe_price_id != price_id):
        plan = ProviderPlan.query.filter_by(stripe_price_id=price_id).first() or plan
    return _upsert(
        row.user_id,
        plan,
        subscription.get("id"),
        subscription.get("status") or row.status,
        _period_end(subscription.get("current_period_end")) or row.current_period_end,
    )
