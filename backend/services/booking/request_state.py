"""
Passenger request state machine.

    pending -> confirmed   (ride creator, needs a free seat)
    pending -> rejected    (ride creator)
    pending -> cancelled   (requester)
    confirmed -> cancelled (requester or ride creator, frees the seat)

confirmed, rejected and cancelled accept no further transitions except the
one above.
"""

import logging
from datetime import datetime
from typing import Optional, Tuple

from django.utils import timezone

from rides.models import PassengerRequest
from . import seat_ledger
from .events import RideEvent, request_decided
from .exceptions import InvalidTransition, NotRideOwner, NotRequestOwner

logger = logging.getLogger(__name__)

PENDING = PassengerRequest.STATUS_PENDING
CONFIRMED = PassengerRequest.STATUS_CONFIRMED
REJECTED = PassengerRequest.STATUS_REJECTED
CANCELLED = PassengerRequest.STATUS_CANCELLED

ALLOWED_TRANSITIONS = {
    PENDING: {CONFIRMED, REJECTED, CANCELLED},
    CONFIRMED: {CANCELLED},
    REJECTED: set(),
    CANCELLED: set(),
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def _check_actor(ride, passenger_request, current: str, target: str, actor_id: int) -> None:
    is_creator = actor_id == ride.creator_id
    is_requester = actor_id == passenger_request.user_id

    if target in (CONFIRMED, REJECTED):
        if not is_creator:
            raise NotRideOwner()
    elif current == PENDING and target == CANCELLED:
        if not is_requester:
            raise NotRequestOwner()
    elif current == CONFIRMED and target == CANCELLED:
        if not (is_creator or is_requester):
            raise NotRequestOwner()


def transition(
    ride,
    passenger_request: PassengerRequest,
    target: str,
    actor_id: int,
    now: Optional[datetime] = None,
) -> Tuple[PassengerRequest, RideEvent]:
    """
    Move ``passenger_request`` to ``target`` on behalf of ``actor_id``.

    Must be called with the ride locked. Returns the updated request and the
    event describing the change.

    Raises:
        InvalidTransition: target not reachable from the current status
        NotRideOwner / NotRequestOwner: actor may not perform this transition
        NoSeatsAvailable: confirming on a full ride
    """
    current = passenger_request.status
    if not can_transition(current, target):
        raise InvalidTransition(current, target)

    _check_actor(ride, passenger_request, current, target, actor_id)

    now = now or timezone.now()

    if target == CONFIRMED:
        seat_ledger.try_reserve(ride, passenger_request, now=now)

    elif target == REJECTED:
        passenger_request.status = REJECTED
        passenger_request.decided_at = now
        passenger_request.save(update_fields=["status", "decided_at"])

    else:
        update_fields = ["status", "cancelled_at"]
        passenger_request.status = CANCELLED
        passenger_request.cancelled_at = now
        if passenger_request.decided_at is None:
            passenger_request.decided_at = now
            update_fields.append("decided_at")
        passenger_request.save(update_fields=update_fields)

        if current == CONFIRMED:
            seat_ledger.release(ride, passenger_request)

    logger.info(
        "Request %s on ride %s: %s -> %s by user %s",
        passenger_request.id, ride.id, current, target, actor_id,
    )
    return passenger_request, request_decided(passenger_request, ride, current, actor_id)
