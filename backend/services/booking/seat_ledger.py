"""
Seat accounting for a single ride.

Seat availability is always derived from the ride's passenger requests and
never stored as its own counter. ``try_reserve`` must run while the caller
holds the ride's row lock (see ``booking_service._lock_ride``).
"""

import logging
from datetime import datetime
from typing import Optional

from django.utils import timezone

from rides.models import PassengerRequest
from .exceptions import NoSeatsAvailable, InvariantViolation

logger = logging.getLogger(__name__)


def prefetched_passengers(ride):
    """The ride's passenger requests if they were prefetched, else None."""
    cache = getattr(ride, "_prefetched_objects_cache", {})
    if "passengers" not in cache:
        return None
    return list(ride.passengers.all())


def confirmed_seats(ride) -> int:
    """Number of confirmed passengers on the ride.

    Uses the ``confirmed_count`` annotation when the ride was loaded by a
    listing query, then prefetched passengers, otherwise counts in the
    database.
    """
    annotated = getattr(ride, "confirmed_count", None)
    if annotated is not None:
        return annotated
    passengers = prefetched_passengers(ride)
    if passengers is not None:
        return sum(1 for p in passengers if p.status == PassengerRequest.STATUS_CONFIRMED)
    return ride.passengers.filter(status=PassengerRequest.STATUS_CONFIRMED).count()


def available_seats(ride) -> int:
    """Seats left on the ride: ``total_seats - confirmed``.

    Raises:
        InvariantViolation: if more passengers are confirmed than seats exist
    """
    available = ride.total_seats - confirmed_seats(ride)
    if available < 0:
        logger.critical(
            "Seat invariant violated for ride %s: %d seats, %d confirmed",
            ride.id, ride.total_seats, ride.total_seats - available,
        )
        raise InvariantViolation(
            f"Ride {ride.id} has more confirmed passengers than seats"
        )
    return available


def has_free_seat(ride) -> bool:
    return available_seats(ride) > 0


def try_reserve(ride, passenger_request, now: Optional[datetime] = None) -> PassengerRequest:
    """
    Confirm ``passenger_request`` if the ride still has a free seat.

    The seat check and the status write happen under the ride lock held by
    the caller, so two approvals racing for the last seat cannot both win.

    Raises:
        NoSeatsAvailable: if the ride is full
    """
    if available_seats(ride) <= 0:
        raise NoSeatsAvailable()

    passenger_request.status = PassengerRequest.STATUS_CONFIRMED
    passenger_request.decided_at = now or timezone.now()
    passenger_request.save(update_fields=["status", "decided_at"])

    logger.info(
        "Reserved seat on ride %s for user %s (%d left)",
        ride.id, passenger_request.user_id, available_seats(ride),
    )
    return passenger_request


def release(ride, passenger_request) -> int:
    """
    Account for a confirmed request leaving the ride.

    The freed seat shows up by construction once the request is no longer
    confirmed; this re-derives the count so corruption is caught right away.
    Returns the number of available seats after the release.
    """
    if passenger_request.status == PassengerRequest.STATUS_CONFIRMED:
        raise InvariantViolation(
            f"Request {passenger_request.id} released while still confirmed"
        )

    remaining = available_seats(ride)
    logger.info(
        "Released seat on ride %s held by user %s (%d left)",
        ride.id, passenger_request.user_id, remaining,
    )
    return remaining
