"""
Ride matching service.

This module handles:
    - Haversine proximity scoring of a ride against a rider's route
    - Ranking requestable rides for a pickup/dropoff pair
"""

from .geo_matcher import GeoPoint, MatchScore, distance, score
from .ride_matcher import find_best_rides

__all__ = [
    "GeoPoint",
    "MatchScore",
    "distance",
    "score",
    "find_best_rides",
]
