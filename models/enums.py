import enum


class BookingStatus(str, enum.Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentRecordStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class TrackingStatus(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    BOOKING_STARTED = "BOOKING_STARTED"
    PROVIDER_ON_THE_WAY = "PROVIDER_ON_THE_WAY"
    SERVICE_STARTED = "SERVICE_STARTED"
    COMPLETED = "COMPLETED"


class RefundStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class CancellationStatus(str, enum.Enum):
    CANCELLED = "CANCELLED"
    REFUND_PENDING = "REFUND_PENDING"
    REFUNDED = "REFUNDED"
    REFUND_FAILED = "REFUND_FAILED"


class CancellationReason(str, enum.Enum):
    PERSONAL = "personal"
    EMERGENCY = "emergency"
    SCHEDULE_CONFLICT = "schedule_conflict"
    SERVICE_ISSUE = "service_issue"
    OTHER = "other"


class AssignmentStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class PayType(str, enum.Enum):
    FIXED = "FIXED"
    PERCENTAGE = "PERCENTAGE"


class StaffAvailability(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    ON_WORK = "ON_WORK"
    NOT_AVAILABLE = "NOT_AVAILABLE"


class EarningStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"


# Only these moves are legal; anything else is rejected.
TRACKING_TRANSITIONS = {
    TrackingStatus.NOT_STARTED: {TrackingStatus.BOOKING_STARTED},
    TrackingStatus.BOOKING_STARTED: {TrackingStatus.PROVIDER_ON_THE_WAY},
    TrackingStatus.PROVIDER_ON_THE_WAY: {TrackingStatus.SERVICE_STARTED},
    TrackingStatus.SERVICE_STARTED: {TrackingStatus.COMPLETED},
    TrackingStatus.COMPLETED: set(),
}

ASSIGNMENT_TRANSITIONS = {
    AssignmentStatus.PENDING: {AssignmentStatus.ACCEPTED, AssignmentStatus.CANCELLED},
    AssignmentStatus.ACCEPTED: {AssignmentStatus.COMPLETED, AssignmentStatus.CANCELLED},
    AssignmentStatus.CANCELLED: set(),
    AssignmentStatus.COMPLETED: set(),
}

ACTIVE_ASSIGNMENT_STATUSES = (AssignmentStatus.PENDING, AssignmentStatus.ACCEPTED)
