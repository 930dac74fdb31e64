"""
Ride lifecycle: active -> completed | cancelled.

Both transitions cascade to the ride's passenger requests. The cascade is
written in the same transaction as the ride's own status change; callers
must hold the ride lock inside ``transaction.atomic``.
"""

import logging
from datetime import datetime
from typing import List, Optional

from django.contrib.auth import get_user_model
from django.db.models import F
from django.utils import timezone

from rides.models import Ride, PassengerRequest
from . import seat_ledger
from .events import RideEvent, ride_cancelled, ride_completed
from .exceptions import (
    NotRideOwner,
    RideNotRequestable,
    InvalidTransition,
    RideNotDeparted,
)

logger = logging.getLogger(__name__)


def has_departed(ride, now: Optional[datetime] = None) -> bool:
    return ride.departure_time <= (now or timezone.now())


def not_requestable_reason(ride, now: Optional[datetime] = None) -> Optional[str]:
    """Why the ride refuses new requests, or None if it accepts them."""
    if ride.status == Ride.STATUS_CANCELLED:
        return RideNotRequestable.REASON_CANCELLED
    if ride.status == Ride.STATUS_COMPLETED:
        return RideNotRequestable.REASON_COMPLETED
    if has_departed(ride, now):
        return RideNotRequestable.REASON_DEPARTED
    if not seat_ledger.has_free_seat(ride):
        return RideNotRequestable.REASON_FULL
    return None


def is_requestable(ride, now: Optional[datetime] = None) -> bool:
    return not_requestable_reason(ride, now) is None


def ensure_requestable(ride, now: Optional[datetime] = None) -> None:
    """
    Raises:
        RideNotRequestable: with the reason the ride refuses requests
    """
    reason = not_requestable_reason(ride, now)
    if reason is not None:
        raise RideNotRequestable(reason)


def _ensure_owner(ride, actor_id: int) -> None:
    if actor_id != ride.creator_id:
        raise NotRideOwner()


def _ensure_active(ride, target: str) -> None:
    if ride.status != Ride.STATUS_ACTIVE:
        raise InvalidTransition(ride.status, target)


def complete(ride, actor_id: int, now: Optional[datetime] = None, force: bool = False) -> List[RideEvent]:
    """
    Mark the ride completed and reject every request still pending.

    Only the creator may complete, and only after departure unless
    ``force`` is given.
    """
    _ensure_owner(ride, actor_id)
    _ensure_active(ride, Ride.STATUS_COMPLETED)

    now = now or timezone.now()
    if not force and not has_departed(ride, now):
        raise RideNotDeparted(ride.status, Ride.STATUS_COMPLETED)

    pending = ride.passengers.filter(status=PassengerRequest.STATUS_PENDING)
    rejected_ids = list(pending.values_list("user_id", flat=True))
    pending.update(status=PassengerRequest.STATUS_REJECTED, decided_at=now)

    confirmed_ids = list(
        ride.passengers.filter(status=PassengerRequest.STATUS_CONFIRMED)
        .values_list("user_id", flat=True)
    )

    ride.status = Ride.STATUS_COMPLETED
    ride.completed_at = now
    ride.save(update_fields=["status", "completed_at"])

    # Trip counter for the driver and everyone who rode along
    get_user_model().objects.filter(id__in=[ride.creator_id] + confirmed_ids).update(
        completed_rides=F("completed_rides") + 1
    )

    logger.info(
        "Ride %s completed: %d confirmed, %d pending auto-rejected",
        ride.id, len(confirmed_ids), len(rejected_ids),
    )
    return [ride_completed(ride, confirmed_ids + rejected_ids)]


def cancel(ride, actor_id: int, now: Optional[datetime] = None) -> List[RideEvent]:
    """Cancel the ride and every pending or confirmed request on it."""
    _ensure_owner(ride, actor_id)
    _ensure_active(ride, Ride.STATUS_CANCELLED)

    now = now or timezone.now()

    pending = ride.passengers.filter(status=PassengerRequest.STATUS_PENDING)
    confirmed = ride.passengers.filter(status=PassengerRequest.STATUS_CONFIRMED)
    affected_ids = list(pending.values_list("user_id", flat=True))
    affected_ids += list(confirmed.values_list("user_id", flat=True))

    # pending requests are decided by the cancellation, confirmed ones keep
    # their original decision time
    pending.update(status=PassengerRequest.STATUS_CANCELLED, decided_at=now, cancelled_at=now)
    confirmed.update(status=PassengerRequest.STATUS_CANCELLED, cancelled_at=now)

    ride.status = Ride.STATUS_CANCELLED
    ride.cancelled_at = now
    ride.save(update_fields=["status", "cancelled_at"])

    logger.info("Ride %s cancelled, %d passenger(s) affected", ride.id, len(affected_ids))
    return [ride_cancelled(ride, affected_ids)]
