"""
Booking commands: the public API of the booking core.

Every command loads the ride with ``select_for_update`` inside
``transaction.atomic``, so all writes to one ride (and its passengers) are
serialized while different rides never contend. Events produced by a command
are published only after its transaction commits.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from django.db import transaction, IntegrityError
from django.utils import timezone

from rides.models import Ride, PassengerRequest
from . import ride_lifecycle, request_state
from .events import RideEvent, publish_events, ride_requested
from .exceptions import (
    InvalidRide,
    RideNotFound,
    SelfRequest,
    DuplicateRequest,
    NotRideOwner,
    RequestNotFound,
    RequestNotPending,
    RideNotRequestable,
    InvalidTransition,
)
from .queries import active_request_for, latest_request_for

logger = logging.getLogger(__name__)


@dataclass
class BookingResult:
    """Result object for booking commands."""
    ride: Ride
    passenger_request: Optional[PassengerRequest] = None
    message: str = ""
    events: List[RideEvent] = field(default_factory=list)


OPTIONAL_RIDE_FIELDS = (
    "smoking_allowed", "pets_allowed", "alcohol_allowed", "gender_preference",
    "car_model", "car_number",
)


def _lock_ride(ride_id) -> Ride:
    """Load a ride and hold its row lock until the transaction ends.

    On SQLite the lock is the database write lock taken by the IMMEDIATE
    transaction (see ``DATABASES`` in settings).
    """
    try:
        return Ride.objects.select_for_update().get(id=ride_id)
    except (Ride.DoesNotExist, ValueError, TypeError):
        raise RideNotFound()


def _validate_point(point, label: str) -> None:
    try:
        lat = float(point.latitude)
        lon = float(point.longitude)
    except (TypeError, ValueError, AttributeError):
        raise InvalidRide(f"{label} location is invalid.")
    if not (-90 <= lat <= 90 and -180 <= lon <= 180):
        raise InvalidRide(f"{label} coordinates are out of range.")


def create_ride(
    creator,
    pickup,
    dropoff,
    departure_time: datetime,
    total_seats: int,
    price,
    preferences: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> BookingResult:
    """
    Publish a new ride.

    Args:
        creator: the driver (User instance)
        pickup, dropoff: ``services.matching.GeoPoint`` values
        departure_time: aware datetime, must be in the future
        total_seats: at least 1
        price: non-negative price per seat
        preferences: preference and vehicle fields, see ``OPTIONAL_RIDE_FIELDS``

    Raises:
        InvalidRide: if any of the above does not hold
    """
    now = now or timezone.now()

    try:
        total_seats = int(total_seats)
    except (TypeError, ValueError):
        raise InvalidRide("Seat count must be a whole number.")
    if total_seats < 1:
        raise InvalidRide("A ride needs at least one seat.")
    try:
        price = Decimal(str(price))
    except (InvalidOperation, ValueError):
        raise InvalidRide("Price must be a number.")
    if not price.is_finite():
        raise InvalidRide("Price must be a number.")
    if price < 0:
        raise InvalidRide("Price cannot be negative.")
    if departure_time is None or departure_time <= now:
        raise InvalidRide("Departure time must be in the future.")
    _validate_point(pickup, "Pickup")
    _validate_point(dropoff, "Dropoff")

    extra = {
        key: value for key, value in (preferences or {}).items()
        if key in OPTIONAL_RIDE_FIELDS
    }

    ride = Ride.objects.create(
        creator=creator,
        pickup_latitude=pickup.latitude,
        pickup_longitude=pickup.longitude,
        pickup_address=pickup.address or "",
        dropoff_latitude=dropoff.latitude,
        dropoff_longitude=dropoff.longitude,
        dropoff_address=dropoff.address or "",
        departure_time=departure_time,
        total_seats=total_seats,
        price=price,
        **extra,
    )

    logger.info("Ride %s created by user %s with %d seat(s)", ride.id, ride.creator_id, ride.total_seats)
    return BookingResult(ride=ride, message="Ride created successfully")


@transaction.atomic
def request_ride(user, ride_id, now: Optional[datetime] = None) -> BookingResult:
    """
    Request a seat on a ride.

    Raises:
        RideNotFound, SelfRequest, DuplicateRequest, RideNotRequestable
    """
    ride = _lock_ride(ride_id)

    if user.id == ride.creator_id:
        raise SelfRequest()

    if active_request_for(ride, user.id) is not None:
        raise DuplicateRequest()

    ride_lifecycle.ensure_requestable(ride, now)

    try:
        with transaction.atomic():
            passenger_request = PassengerRequest.objects.create(
                ride=ride,
                user=user,
                status=PassengerRequest.STATUS_PENDING,
                requested_at=now or timezone.now(),
            )
    except IntegrityError:
        raise DuplicateRequest()

    events = [ride_requested(passenger_request, ride)]
    publish_events(events)

    logger.info("User %s requested a seat on ride %s", user.id, ride.id)
    return BookingResult(
        ride=ride,
        passenger_request=passenger_request,
        message="Ride requested successfully. Waiting for driver approval.",
        events=events,
    )


@transaction.atomic
def decide_request(
    creator_id: int,
    ride_id,
    requester_id: int,
    decision: str,
    now: Optional[datetime] = None,
) -> BookingResult:
    """
    Confirm or reject a pending request. Only the ride's creator may decide.

    Raises:
        RideNotFound, NotRideOwner, RequestNotFound, RequestNotPending,
        InvalidTransition (unknown decision), NoSeatsAvailable,
        RideNotRequestable (ride already departed, on confirmation)
    """
    if decision not in (PassengerRequest.STATUS_CONFIRMED, PassengerRequest.STATUS_REJECTED):
        raise InvalidTransition(PassengerRequest.STATUS_PENDING, decision)

    ride = _lock_ride(ride_id)

    if creator_id != ride.creator_id:
        raise NotRideOwner()

    passenger_request = latest_request_for(ride, requester_id)
    if passenger_request is None:
        raise RequestNotFound()
    if passenger_request.status != PassengerRequest.STATUS_PENDING:
        raise RequestNotPending(status=passenger_request.status)

    if decision == PassengerRequest.STATUS_CONFIRMED and ride_lifecycle.has_departed(ride, now):
        raise RideNotRequestable(RideNotRequestable.REASON_DEPARTED)

    passenger_request, event = request_state.transition(
        ride, passenger_request, decision, creator_id, now=now
    )
    publish_events([event])

    return BookingResult(
        ride=ride,
        passenger_request=passenger_request,
        message=f"Request {decision} successfully",
        events=[event],
    )


@transaction.atomic
def cancel_request(user_id: int, ride_id, now: Optional[datetime] = None) -> BookingResult:
    """
    Cancel the caller's own request (pending or confirmed).

    Raises:
        RideNotFound, RequestNotFound, InvalidTransition (already terminal)
    """
    ride = _lock_ride(ride_id)

    passenger_request = latest_request_for(ride, user_id)
    if passenger_request is None:
        raise RequestNotFound()

    passenger_request, event = request_state.transition(
        ride, passenger_request, PassengerRequest.STATUS_CANCELLED, user_id, now=now
    )
    publish_events([event])

    return BookingResult(
        ride=ride,
        passenger_request=passenger_request,
        message="Request cancelled successfully",
        events=[event],
    )


@transaction.atomic
def remove_passenger(creator_id: int, ride_id, requester_id: int, now: Optional[datetime] = None) -> BookingResult:
    """Driver-side cancellation of a confirmed passenger."""
    ride = _lock_ride(ride_id)

    if creator_id != ride.creator_id:
        raise NotRideOwner()

    passenger_request = latest_request_for(ride, requester_id)
    if passenger_request is None:
        raise RequestNotFound()
    if passenger_request.status != PassengerRequest.STATUS_CONFIRMED:
        raise InvalidTransition(passenger_request.status, PassengerRequest.STATUS_CANCELLED)

    passenger_request, event = request_state.transition(
        ride, passenger_request, PassengerRequest.STATUS_CANCELLED, creator_id, now=now
    )
    publish_events([event])

    return BookingResult(
        ride=ride,
        passenger_request=passenger_request,
        message="Passenger removed from ride",
        events=[event],
    )


@transaction.atomic
def cancel_ride(creator_id: int, ride_id, now: Optional[datetime] = None) -> BookingResult:
    """
    Cancel a ride and all of its pending/confirmed requests.

    Raises:
        RideNotFound, NotRideOwner, InvalidTransition (ride not active)
    """
    ride = _lock_ride(ride_id)
    events = ride_lifecycle.cancel(ride, creator_id, now=now)
    publish_events(events)

    return BookingResult(ride=ride, message="Ride cancelled successfully", events=events)


@transaction.atomic
def complete_ride(creator_id: int, ride_id, now: Optional[datetime] = None, force: bool = False) -> BookingResult:
    """
    Complete a departed ride; pending requests are rejected.

    Raises:
        RideNotFound, NotRideOwner, InvalidTransition (ride not active),
        RideNotDeparted (before departure without ``force``)
    """
    ride = _lock_ride(ride_id)
    events = ride_lifecycle.complete(ride, creator_id, now=now, force=force)
    publish_events(events)

    return BookingResult(ride=ride, message="Ride completed successfully", events=events)


@transaction.atomic
def expire_departed_requests(now: Optional[datetime] = None) -> int:
    """
    Reject pending requests on active rides that have already departed.

    Returns the number of rejected requests.
    """
    now = now or timezone.now()
    ride_ids = list(
        Ride.objects.filter(
            status=Ride.STATUS_ACTIVE,
            departure_time__lte=now,
            passengers__status=PassengerRequest.STATUS_PENDING,
        ).values_list("id", flat=True).distinct()
    )

    expired = 0
    events = []
    for ride_id in ride_ids:
        ride = _lock_ride(ride_id)
        if ride.status != Ride.STATUS_ACTIVE:
            continue
        for passenger_request in ride.passengers.filter(status=PassengerRequest.STATUS_PENDING):
            _, event = request_state.transition(
                ride, passenger_request, PassengerRequest.STATUS_REJECTED, ride.creator_id, now=now
            )
            events.append(event)
            expired += 1

    publish_events(events)
    if expired:
        logger.info("Rejected %d pending request(s) on %d departed ride(s)", expired, len(ride_ids))
    return expired
