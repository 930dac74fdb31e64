"""
Transition events emitted by the booking core.

Events are plain data. They are handed to ``publish_events`` which defers
delivery until the surrounding transaction commits, so nothing is announced
for a change that was rolled back.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import List, Optional

from django.db import transaction

logger = logging.getLogger(__name__)


RIDE_REQUESTED = "ride_requested"
REQUEST_DECIDED = "request_decided"
RIDE_CANCELLED = "ride_cancelled"
RIDE_COMPLETED = "ride_completed"


@dataclass(frozen=True)
class RideEvent:
    """One notification-worthy state change."""
    event_type: str
    ride_id: int
    recipient_ids: List[int] = field(default_factory=list)
    actor_id: Optional[int] = None
    request_id: Optional[int] = None
    status: Optional[str] = None
    previous_status: Optional[str] = None
    message: str = ""

    def as_payload(self):
        return asdict(self)


def ride_requested(passenger_request, ride) -> RideEvent:
    return RideEvent(
        event_type=RIDE_REQUESTED,
        ride_id=ride.id,
        recipient_ids=[ride.creator_id],
        actor_id=passenger_request.user_id,
        request_id=passenger_request.id,
        status=passenger_request.status,
        message="A rider requested a seat on your ride.",
    )


def request_decided(passenger_request, ride, previous_status, actor_id) -> RideEvent:
    # Counterparty of the actor receives the notification
    if actor_id == ride.creator_id:
        recipient = passenger_request.user_id
    else:
        recipient = ride.creator_id

    return RideEvent(
        event_type=REQUEST_DECIDED,
        ride_id=ride.id,
        recipient_ids=[recipient],
        actor_id=actor_id,
        request_id=passenger_request.id,
        status=passenger_request.status,
        previous_status=previous_status,
        message=f"Seat request is now {passenger_request.status}.",
    )


def ride_cancelled(ride, affected_user_ids) -> RideEvent:
    return RideEvent(
        event_type=RIDE_CANCELLED,
        ride_id=ride.id,
        recipient_ids=list(affected_user_ids),
        actor_id=ride.creator_id,
        status=ride.status,
        message="The driver cancelled this ride.",
    )


def ride_completed(ride, affected_user_ids) -> RideEvent:
    return RideEvent(
        event_type=RIDE_COMPLETED,
        ride_id=ride.id,
        recipient_ids=list(affected_user_ids),
        actor_id=ride.creator_id,
        status=ride.status,
        message="This ride has been completed.",
    )


def publish_events(events: List[RideEvent]) -> None:
    """Queue events for dispatch once the current transaction commits."""
    from rides.tasks import dispatch_ride_event_task

    for event in events:
        if not event.recipient_ids:
            continue
        payload = event.as_payload()
        transaction.on_commit(lambda p=payload: dispatch_ride_event_task.delay(p))
        logger.debug("Queued %s for ride %s", event.event_type, event.ride_id)
