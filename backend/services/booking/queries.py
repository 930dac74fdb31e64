"""
Read-side helpers over the ride aggregate.

Seat counts, pending counts and "what is my request status" are derived here
and nowhere else, so every endpoint reports the same numbers.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from django.db.models import Count, F, Q
from django.utils import timezone

from rides.models import Ride, PassengerRequest
from . import seat_ledger
from .exceptions import RideNotFound


@dataclass(frozen=True)
class RideSummary:
    total_seats: int
    confirmed_count: int
    pending_count: int
    available_seats: int
    viewer_status: Optional[str] = None


def active_request_for(ride, user_id) -> Optional[PassengerRequest]:
    """The user's pending or confirmed request on the ride, if any."""
    return (
        ride.passengers
        .filter(user_id=user_id, status__in=PassengerRequest.ACTIVE_STATUSES)
        .first()
    )


def latest_request_for(ride, user_id) -> Optional[PassengerRequest]:
    """The user's active request, falling back to their most recent one."""
    active = active_request_for(ride, user_id)
    if active is not None:
        return active
    return ride.passengers.filter(user_id=user_id).order_by("-requested_at", "-id").first()


def pending_requests(ride):
    return ride.passengers.filter(status=PassengerRequest.STATUS_PENDING)


def confirmed_passengers(ride):
    return ride.passengers.filter(status=PassengerRequest.STATUS_CONFIRMED)


def _viewer_request(ride, passengers, viewer_id):
    if passengers is None:
        return latest_request_for(ride, viewer_id)
    own = [p for p in passengers if p.user_id == viewer_id]
    for passenger_request in own:
        if passenger_request.is_active:
            return passenger_request
    return max(own, key=lambda p: (p.requested_at, p.id), default=None)


def ride_summary(ride, viewer_id=None) -> RideSummary:
    """Seat counts and the viewer's request status.

    Works from annotations or prefetched passengers when the ride has them,
    so listing endpoints stay at a fixed number of queries.
    """
    passengers = seat_ledger.prefetched_passengers(ride)
    confirmed = seat_ledger.confirmed_seats(ride)
    pending = getattr(ride, "pending_count", None)
    if pending is None:
        if passengers is not None:
            pending = sum(1 for p in passengers if p.status == PassengerRequest.STATUS_PENDING)
        else:
            pending = pending_requests(ride).count()

    viewer_status = None
    if viewer_id is not None and viewer_id != ride.creator_id:
        own = _viewer_request(ride, passengers, viewer_id)
        viewer_status = own.status if own else None

    return RideSummary(
        total_seats=ride.total_seats,
        confirmed_count=confirmed,
        pending_count=pending,
        available_seats=seat_ledger.available_seats(ride),
        viewer_status=viewer_status,
    )


def with_seat_counts(queryset):
    """Annotate rides with ``confirmed_count`` and ``pending_count``."""
    return queryset.annotate(
        confirmed_count=Count(
            "passengers",
            filter=Q(passengers__status=PassengerRequest.STATUS_CONFIRMED),
            distinct=True,
        ),
        pending_count=Count(
            "passengers",
            filter=Q(passengers__status=PassengerRequest.STATUS_PENDING),
            distinct=True,
        ),
    )


def open_rides(now: Optional[datetime] = None):
    """Active, future rides that still have at least one free seat."""
    now = now or timezone.now()
    return (
        with_seat_counts(
            Ride.objects.filter(status=Ride.STATUS_ACTIVE, departure_time__gt=now)
        )
        .filter(confirmed_count__lt=F("total_seats"))
        .select_related("creator")
    )


def get_ride(ride_id) -> Ride:
    try:
        return (
            Ride.objects.select_related("creator")
            .prefetch_related("passengers__user")
            .get(id=ride_id)
        )
    except (Ride.DoesNotExist, ValueError, TypeError):
        raise RideNotFound()


ORDERINGS = {
    "departure": ("departure_time", "id"),
    "-departure": ("-departure_time", "-id"),
    "price": ("price", "departure_time", "id"),
    "-price": ("-price", "departure_time", "id"),
    "seats": ("available", "departure_time", "id"),
    "-seats": ("-available", "departure_time", "id"),
}


def list_rides(
    min_seats: Optional[int] = None,
    price_min: Optional[Decimal] = None,
    price_max: Optional[Decimal] = None,
    search: str = "",
    creator_id: Optional[int] = None,
    ordering: str = "departure",
    now: Optional[datetime] = None,
):
    """Browse open rides with the filters offered by the ride search page."""
    rides = open_rides(now).annotate(available=F("total_seats") - F("confirmed_count"))

    if min_seats:
        rides = rides.filter(available__gte=min_seats)
    if price_min is not None:
        rides = rides.filter(price__gte=price_min)
    if price_max is not None:
        rides = rides.filter(price__lte=price_max)
    if search:
        rides = rides.filter(
            Q(pickup_address__icontains=search) | Q(dropoff_address__icontains=search)
        )
    if creator_id is not None:
        rides = rides.filter(creator_id=creator_id)

    return (
        rides.prefetch_related("passengers__user")
        .order_by(*ORDERINGS.get(ordering, ORDERINGS["departure"]))
    )


def rides_for_creator(user_id):
    """Every ride the user published, newest departure first."""
    return (
        with_seat_counts(Ride.objects.filter(creator_id=user_id))
        .select_related("creator")
        .prefetch_related("passengers__user")
        .order_by("-departure_time", "-id")
    )


def requests_for_user(user_id):
    """The user's seat requests with their rides, most recent first."""
    return (
        PassengerRequest.objects.filter(user_id=user_id)
        .select_related("ride", "ride__creator")
        .prefetch_related("ride__passengers__user")
        .order_by("-requested_at", "-id")
    )
