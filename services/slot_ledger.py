"""
Capacity accounting per (service, slot, date).

Occupancy is never cached: it is counted inside the caller's transaction,
right before the insert it guards.
"""
from sqlalchemy import and_, or_

from models.booking import Booking
from models.enums import BookingStatus
from models.service import UNLIMITED, Service
from services.errors import CapacityExceeded, NotFound


def occupancy(service_id: int, slot_id: int, day, now) -> int:
    """Bookings currently consuming a seat: paid ones plus holds that have not lapsed."""
    return (
        Booking.query
        .filter(
            Booking.service_id == service_id,
            Booking.slot_id == slot_id,
            Booking.date == day,
            or_(
                Booking.status.in_([BookingStatus.CONFIRMED, BookingStatus.COMPLETED]),
                and_(
                    Booking.status == BookingStatus.PENDING_PAYMENT,
                    Booking.expires_at > now,
                ),
            ),
        )
        .count()
    )


def lock_service(service_id: int) -> Service:
    # FOR UPDATE serializes reservations per service where the database supports it
    service = Service.query.filter_by(id=service_id).with_for_update().first()
    if not service or not service.is_active:
        raise NotFound(f"Service {service_id} not found")
    return service


def admit(service: Service, slot_id: int, day, now, slot_label=None) -> int:
    """Raise CapacityExceeded when no seat is left; returns the occupancy seen."""
    taken = occupancy(service.id, slot_id, day, now)
    if service.total_booking_allow != UNLIMITED and taken >= service.total_booking_allow:
        raise CapacityExceeded(
            f"{service.name} at {slot_label or slot_id} on {day.isoformat()} is no longer available, "
            "please choose another time"
        )
    return taken


def remaining(service: Service, slot_id: int, day, now):
    """Seats left, or None for unlimited services."""
    if service.total_booking_allow == UNLIMITED:
        return None
    return max(service.total_booking_allow - occupancy(service.id, slot_id, day, now), 0)
