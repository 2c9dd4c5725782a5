import json
import logging
from dataclasses import asdict, dataclass, field
from typing import ClassVar, List, Optional, Union

from flask import has_request_context, request
from models import db
from models.audit_log import AuditLog

logger = logging.getLogger(__name__)


# ---------- event payloads (one dataclass per action) ----------

@dataclass(frozen=True)
class HoldsPlaced:
    ACTION: ClassVar[str] = "HOLDS_PLACED"
    payment_id: int
    booking_ids: List[int]
    amount: int
    expires_at: str


@dataclass(frozen=True)
class PaymentSettled:
    ACTION: ClassVar[str] = "PAYMENT_SETTLED"
    payment_id: int
    booking_ids: List[int]
    platform_fee_total: int
    stripe_session_id: Optional[str] = None


@dataclass(frozen=True)
class SettlementSkipped:
    ACTION: ClassVar[str] = "SETTLEMENT_SKIPPED"
    payment_id: int
    reason: str


@dataclass(frozen=True)
class SettlementRejected:
    ACTION: ClassVar[str] = "SETTLEMENT_REJECTED"
    payment_id: int
    reason: str
    stripe_session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None


@dataclass(frozen=True)
class PaymentFailed:
    ACTION: ClassVar[str] = "PAYMENT_FAILED"
    payment_id: int
    reason: str


@dataclass(frozen=True)
class BookingCancelled:
    ACTION: ClassVar[str] = "BOOKING_CANCELLED"
    booking_id: int
    cancellation_id: int
    fee_percentage: int
    cancellation_fee: int
    refund_amount: int
    hours_before_service: float


@dataclass(frozen=True)
class RefundUpdated:
    ACTION: ClassVar[str] = "REFUND_UPDATED"
    cancellation_id: int
    refund_status: str
    stripe_refund_id: Optional[str] = None


@dataclass(frozen=True)
class StaffAssigned:
    ACTION: ClassVar[str] = "STAFF_ASSIGNED"
    booking_id: int
    assignment_id: int
    staff_id: int


@dataclass(frozen=True)
class AssignmentResponded:
    ACTION: ClassVar[str] = "ASSIGNMENT_RESPONDED"
    assignment_id: int
    status: str


@dataclass(frozen=True)
class TrackingAdvanced:
    ACTION: ClassVar[str] = "TRACKING_ADVANCED"
    booking_id: int
    from_status: str
    to_status: str
    early_start_reason: Optional[str] = None


@dataclass(frozen=True)
class HoldsReclaimed:
    ACTION: ClassVar[str] = "HOLDS_RECLAIMED"
    count: int


@dataclass(frozen=True)
class ReminderSent:
    ACTION: ClassVar[str] = "REMINDER_SENT"
    booking_id: int
    staff_id: int


@dataclass(frozen=True)
class SubscriptionSynced:
    ACTION: ClassVar[str] = "SUBSCRIPTION_SYNCED"
    plan_id: int
    status: str
    stripe_subscription_id: Optional[str] = None


@dataclass(frozen=True)
class LoginSucceeded:
    ACTION: ClassVar[str] = "LOGIN_SUCCESS"
    revoked_sessions: int


@dataclass(frozen=True)
class LoginFailed:
    ACTION: ClassVar[str] = "LOGIN_FAIL"
    email: str


@dataclass(frozen=True)
class LoggedOut:
    ACTION: ClassVar[str] = "LOGOUT"


AuditEvent = Union[
    HoldsPlaced, PaymentSettled, SettlementSkipped, SettlementRejected, PaymentFailed,
    BookingCancelled, RefundUpdated, StaffAssigned, AssignmentResponded,
    TrackingAdvanced, HoldsReclaimed, ReminderSent, SubscriptionSynced,
    LoginSucceeded, LoginFailed, LoggedOut,
]


def log_event(event: AuditEvent, user_id=None, entity=None, entity_id=None):
    """
    Append an audit row in its own commit. Called after the business change
    has committed, so a failure here is logged and never propagated.
    """
    ip = None
    user_agent = None
    if has_request_context():
        ip = request.headers.get("X-Forwarded-For", request.remote_addr)
        user_agent = request.headers.get("User-Agent", "")

    row = AuditLog(
        user_id=user_id,
        action=event.ACTION,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        ip=ip,
        user_agent=user_agent[:255] if user_agent else None,
        metadata_json=json.dumps(asdict(event)),
    )
    try:
        db.session.add(row)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Audit write failed for %s", event.ACTION)
