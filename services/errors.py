class BookingError(Exception):
    """Base for every error the booking core reports to a caller."""

    code = "BOOKING_ERROR"
    http_status = 400
    retryable = False
    default_message = "Request could not be completed"

    def __init__(self, message=None, code=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if code:
            self.code = code

    def to_dict(self):
        return {"error": self.message, "code": self.code, "retryable": self.retryable}


# ---------- caller input ----------

class ValidationError(BookingError):
    code = "INVALID_INPUT"
    default_message = "Invalid request"


class BelowMinimum(ValidationError):
    code = "BELOW_MINIMUM"
    default_message = "Order total is below the minimum checkout amount"


class CrossBusinessCheckout(ValidationError):
    code = "CROSS_BUSINESS"
    default_message = "Only services from the same business can be booked together"


class EarlyStartReasonRequired(ValidationError):
    code = "EARLY_START_REASON_REQUIRED"
    default_message = "Starting this early requires a reason"


class NotFound(BookingError):
    code = "NOT_FOUND"
    http_status = 404
    default_message = "Not found"


class Forbidden(BookingError):
    code = "FORBIDDEN"
    http_status = 403
    default_message = "Forbidden"


# ---------- capacity (retryable) ----------

class CapacityConflict(BookingError):
    http_status = 409
    retryable = True


class CapacityExceeded(CapacityConflict):
    code = "SLOT_FULL"
    default_message = "This time is no longer available, please choose another"


class ConcurrentConflict(CapacityConflict):
    code = "CONCURRENT_CONFLICT"
    default_message = "Another request changed this booking at the same time, please retry"


# ---------- booking state (not retryable) ----------

class StateConflict(BookingError):
    code = "STATE_CONFLICT"
    http_status = 409


class DuplicateBooking(StateConflict):
    code = "DUPLICATE_BOOKING"
    default_message = "You already booked this service for that slot and date"


class HoldExpired(StateConflict):
    code = "HOLD_EXPIRED"
    default_message = (
        "Your payment could not be applied because the hold expired. "
        "You have not been charged a booking, contact support if charged"
    )


class BookingCompleted(StateConflict):
    code = "BOOKING_COMPLETED"
    default_message = "Completed bookings cannot be cancelled"


class ServiceInProgress(StateConflict):
    code = "SERVICE_IN_PROGRESS"
    default_message = "The service has already started and can no longer be cancelled"


class SlotInPast(StateConflict):
    code = "SLOT_IN_PAST"
    default_message = "The booking time has already passed"


class InvalidTransition(StateConflict):
    code = "INVALID_TRANSITION"
    default_message = "Status change not allowed"


class BookingNotConfirmed(StateConflict):
    code = "BOOKING_NOT_CONFIRMED"
    default_message = "Booking is not confirmed"


class AssignmentConflict(StateConflict):
    code = "ASSIGNMENT_CONFLICT"
    default_message = "Booking already has an active staff assignment"


# ---------- infrastructure ----------

class ExternalGatewayError(BookingError):
    code = "GATEWAY_ERROR"
    http_status = 502
    default_message = "Payment gateway request failed"


class TransientInfrastructureError(BookingError):
    code = "SERVICE_UNAVAILABLE"
    http_status = 503
    retryable = True
    default_message = "Service temporarily unavailable, please retry"
