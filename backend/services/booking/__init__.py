"""
Ride booking service - seat requests and ride lifecycle.

This module handles:
    - Publishing rides
    - Requesting, confirming, rejecting and cancelling seats
    - Completing and cancelling rides
    - Derived seat counts for every consumer
"""

from .booking_service import (
    BookingResult,
    create_ride,
    request_ride,
    decide_request,
    cancel_request,
    remove_passenger,
    cancel_ride,
    complete_ride,
    expire_departed_requests,
)

from .exceptions import (
    BookingError,
    InvalidRide,
    RideNotFound,
    SelfRequest,
    DuplicateRequest,
    RideNotRequestable,
    NoSeatsAvailable,
    NotRideOwner,
    NotRequestOwner,
    RequestNotFound,
    RequestNotPending,
    InvalidTransition,
    RideNotDeparted,
    InvariantViolation,
)

__all__ = [
    # Commands
    "BookingResult",
    "create_ride",
    "request_ride",
    "decide_request",
    "cancel_request",
    "remove_passenger",
    "cancel_ride",
    "complete_ride",
    "expire_departed_requests",
    # Exceptions
    "BookingError",
    "InvalidRide",
    "RideNotFound",
    "SelfRequest",
    "DuplicateRequest",
    "RideNotRequestable",
    "NoSeatsAvailable",
    "NotRideOwner",
    "NotRequestOwner",
    "RequestNotFound",
    "RequestNotPending",
    "InvalidTransition",
    "RideNotDeparted",
    "InvariantViolation",
]
