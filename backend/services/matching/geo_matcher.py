"""
Proximity scoring of rides against a requested pickup/dropoff pair.

Pure functions over coordinates; no database access and no geocoding.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from common.utils import calculate_distance


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair with an optional display address."""
    latitude: float
    longitude: float
    address: str = ""


@dataclass(frozen=True)
class MatchScore:
    pickup_distance: float
    dropoff_distance: float
    total_distance: float


def distance(point_a: GeoPoint, point_b: GeoPoint) -> float:
    """Great-circle distance between two points in meters."""
    return calculate_distance(
        point_a.latitude, point_a.longitude,
        point_b.latitude, point_b.longitude,
    )


def ride_pickup(ride) -> GeoPoint:
    return GeoPoint(float(ride.pickup_latitude), float(ride.pickup_longitude), ride.pickup_address or "")


def ride_dropoff(ride) -> GeoPoint:
    return GeoPoint(float(ride.dropoff_latitude), float(ride.dropoff_longitude), ride.dropoff_address or "")


def score(ride, request_pickup: GeoPoint, request_dropoff: GeoPoint, max_distance_meters: float) -> Optional[MatchScore]:
    """
    Score a ride for a rider's pickup/dropoff.

    Returns None when either end of the ride is farther than
    ``max_distance_meters`` from the rider's corresponding point.
    """
    pickup_distance = distance(ride_pickup(ride), request_pickup)
    if pickup_distance > max_distance_meters:
        return None

    dropoff_distance = distance(ride_dropoff(ride), request_dropoff)
    if dropoff_distance > max_distance_meters:
        return None

    return MatchScore(
        pickup_distance=pickup_distance,
        dropoff_distance=dropoff_distance,
        total_distance=pickup_distance + dropoff_distance,
    )


def rank_key(ride, match: MatchScore) -> Tuple:
    """Sort key: closest combined distance, then earliest departure, then id."""
    return (match.total_distance, ride.departure_time, ride.id)
