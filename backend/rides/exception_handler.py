"""Translate booking errors into API responses."""

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from services.booking.exceptions import (
    BookingError,
    InvalidRide,
    RideNotFound,
    RequestNotFound,
    NotRideOwner,
    NotRequestOwner,
    DuplicateRequest,
    NoSeatsAvailable,
    RideNotRequestable,
    RequestNotPending,
    InvalidTransition,
    SelfRequest,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = [
    (RideNotFound, status.HTTP_404_NOT_FOUND),
    (RequestNotFound, status.HTTP_404_NOT_FOUND),
    (NotRideOwner, status.HTTP_403_FORBIDDEN),
    (NotRequestOwner, status.HTTP_403_FORBIDDEN),
    (DuplicateRequest, status.HTTP_409_CONFLICT),
    (NoSeatsAvailable, status.HTTP_409_CONFLICT),
    (RideNotRequestable, status.HTTP_409_CONFLICT),
    (RequestNotPending, status.HTTP_409_CONFLICT),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (SelfRequest, status.HTTP_400_BAD_REQUEST),
    (InvalidRide, status.HTTP_400_BAD_REQUEST),
]


def status_for(exc: BookingError) -> int:
    for error_class, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_class):
            return status_code
    return status.HTTP_400_BAD_REQUEST


def booking_exception_handler(exc, context):
    """
    DRF exception handler that renders ``BookingError`` as
    ``{"error": ..., "code": ...}``.

    Anything else (including ``InvariantViolation``) goes through DRF's
    default handling and, if unhandled there, propagates as a server error.
    """
    if isinstance(exc, BookingError):
        view = context.get("view")
        logger.info("%s rejected: %s", view.__class__.__name__ if view else "request", exc.code)
        return Response(exc.as_dict(), status=status_for(exc))

    return exception_handler(exc, context)
