"""
shared/utils/transitions.py
Allowed status transitions for bookings and trips.
"""

from shared.models.models import BookingStatus, TripStatus
from shared.utils.errors import AppError

BOOKING_TRANSITIONS: dict[BookingStatus, frozenset] = {
    BookingStatus.PENDING_PAYMENT: frozenset({
        BookingStatus.CONFIRMED, BookingStatus.PAYMENT_FAILED, BookingStatus.CANCELLED,
    }),
    BookingStatus.PAYMENT_FAILED: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({
        BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.REFUNDED,
    }),
    BookingStatus.CANCELLED: frozenset({BookingStatus.REFUNDED}),
    BookingStatus.COMPLETED: frozenset({BookingStatus.REFUNDED}),
    BookingStatus.REFUNDED: frozenset(),
}

CANCELLABLE_BOOKING_STATUSES = frozenset({
    BookingStatus.PENDING_PAYMENT, BookingStatus.PAYMENT_FAILED, BookingStatus.CONFIRMED,
})

TRIP_TRANSITIONS: dict[TripStatus, frozenset] = {
    TripStatus.REQUESTED: frozenset({TripStatus.CONFIRMED, TripStatus.ASSIGNED, TripStatus.CANCELLED}),
    TripStatus.CONFIRMED: frozenset({
        TripStatus.ASSIGNED, TripStatus.EN_ROUTE, TripStatus.IN_PROGRESS, TripStatus.CANCELLED,
    }),
    TripStatus.ASSIGNED: frozenset({TripStatus.EN_ROUTE, TripStatus.IN_PROGRESS, TripStatus.CANCELLED}),
    TripStatus.EN_ROUTE: frozenset({TripStatus.IN_PROGRESS, TripStatus.CANCELLED}),
    TripStatus.IN_PROGRESS: frozenset({TripStatus.COMPLETED, TripStatus.CANCELLED}),
    TripStatus.COMPLETED: frozenset(),
    TripStatus.CANCELLED: frozenset(),
}

BOOKABLE_TRIP_STATUSES = frozenset({TripStatus.REQUESTED, TripStatus.CONFIRMED, TripStatus.ASSIGNED})
DRIVER_SETTABLE_TRIP_STATUSES = frozenset({
    TripStatus.EN_ROUTE, TripStatus.IN_PROGRESS, TripStatus.COMPLETED,
})


def can_transition_booking(current, target) -> bool:
    return BookingStatus(target) in BOOKING_TRANSITIONS[BookingStatus(current)]


def can_transition_trip(current, target) -> bool:
    return TripStatus(target) in TRIP_TRANSITIONS[TripStatus(current)]


def assert_booking_transition(current, target) -> None:
    if not can_transition_booking(current, target):
        raise AppError(
            f"Invalid booking status transition from {BookingStatus(current).value} "
            f"to {BookingStatus(target).value}",
            status_code=400,
        )


def assert_trip_transition(current, target) -> None:
    if not can_transition_trip(current, target):
        raise AppError(
            f"Invalid trip status transition from {TripStatus(current).value} "
            f"to {TripStatus(target).value}",
            status_code=400,
        )
