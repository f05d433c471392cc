import logging
from typing import AbstractSet

from .errors import SeatConflictError

logger = logging.getLogger(__name__)


def check_availability(
    location: str,
    booked_seats: AbstractSet[str],
    requested_seats: AbstractSet[str],
    capacity: int,
) -> None:
    """
    Pre-flight seat check against the already time-filtered booked set.
    The backend still enforces this atomically; this only spares a round trip.
    """
    if not requested_seats:
        raise SeatConflictError("no_seats")
    overlapping = set(requested_seats) & set(booked_seats)
    if overlapping:
        raise SeatConflictError("seat_taken", overlapping)
    if len(requested_seats) > capacity:
        logger.info("requested %d seats at %s, capacity %d", len(requested_seats), location, capacity)
        raise SeatConflictError("over_capacity")
