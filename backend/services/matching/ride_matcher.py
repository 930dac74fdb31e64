"""
Find the best rides for a rider's route.

Uses ride pickup coordinates for a coarse bounding-box prefilter in the
database, then scores the remaining candidates exactly with the haversine
distance (closest first).
"""

import logging
import math
from datetime import datetime
from typing import List, Optional, Tuple

from rides.models import Ride
from services.booking import seat_ledger
from services.booking.queries import open_rides
from .geo_matcher import GeoPoint, MatchScore, score, rank_key

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6371000.0

# Slack for coordinates stored with six decimal places
BOX_MARGIN_DEGREES = 1e-5


def _bounding_box(center: GeoPoint, radius_meters: float):
    """Degree offsets covering ``radius_meters`` around ``center``.

    Returns (lat_min, lat_max, lon_min, lon_max); longitude bounds are None
    near the poles or when the box would wrap the antimeridian.
    """
    angular = radius_meters / EARTH_RADIUS_METERS
    lat_offset = math.degrees(angular) + BOX_MARGIN_DEGREES
    lat_min = center.latitude - lat_offset
    lat_max = center.latitude + lat_offset

    cos_lat = math.cos(math.radians(center.latitude))
    if lat_min <= -90 or lat_max >= 90 or math.sin(angular) >= cos_lat:
        return lat_min, lat_max, None, None

    # widest longitude spread of a circle on the sphere
    lon_offset = math.degrees(math.asin(math.sin(angular) / cos_lat)) + BOX_MARGIN_DEGREES
    lon_min = center.longitude - lon_offset
    lon_max = center.longitude + lon_offset
    if lon_min < -180 or lon_max > 180:
        return lat_min, lat_max, None, None
    return lat_min, lat_max, lon_min, lon_max


def candidate_rides(request_pickup: GeoPoint, max_distance_meters: float, now: Optional[datetime] = None):
    """Requestable rides whose pickup lies inside the search box."""
    lat_min, lat_max, lon_min, lon_max = _bounding_box(request_pickup, max_distance_meters)
    rides = open_rides(now).filter(
        pickup_latitude__gte=lat_min,
        pickup_latitude__lte=lat_max,
    )
    if lon_min is not None:
        rides = rides.filter(
            pickup_longitude__gte=lon_min,
            pickup_longitude__lte=lon_max,
        )
    return rides


def rank_rides(rides, request_pickup: GeoPoint, request_dropoff: GeoPoint,
               max_distance_meters: float, limit: Optional[int] = None) -> List[Tuple[Ride, MatchScore]]:
    """Score, filter and order an iterable of rides."""
    matches = []
    for ride in rides:
        if seat_ledger.available_seats(ride) <= 0:
            continue
        match = score(ride, request_pickup, request_dropoff, max_distance_meters)
        if match is not None:
            matches.append((ride, match))

    matches.sort(key=lambda item: rank_key(*item))

    if limit is not None:
        matches = matches[:limit]
    return matches


def find_best_rides(
    request_pickup: GeoPoint,
    request_dropoff: GeoPoint,
    max_distance_meters: float,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[Tuple[Ride, MatchScore]]:
    """
    Rides whose pickup and dropoff both lie within ``max_distance_meters``
    of the rider's points, ordered by combined distance.

    Only active, future rides with a free seat are considered. Ties are
    broken by earlier departure, then ride id. The whole candidate set is
    scored before anything is returned.
    """
    if limit is not None and limit <= 0:
        return []

    candidates = candidate_rides(request_pickup, max_distance_meters, now)
    matches = rank_rides(candidates, request_pickup, request_dropoff, max_distance_meters, limit)

    logger.info(
        "Matched %d ride(s) within %sm of (%s, %s)",
        len(matches), max_distance_meters, request_pickup.latitude, request_pickup.longitude,
    )
    return matches
