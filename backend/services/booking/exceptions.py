"""Custom exceptions for ride booking.

Every recoverable error carries a stable ``code`` so callers can tell
"ride full" apart from "ride cancelled" apart from "already requested".
``InvariantViolation`` does not derive from ``BookingError``:
it signals corrupted data and is never rendered as a user error.
"""


class BookingError(Exception):
    """Base class for expected, caller-recoverable booking failures."""
    code = "booking_error"
    default_message = "The operation could not be completed."

    def __init__(self, message=None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def as_dict(self):
        return {"error": self.message, "code": self.code, **self.details}


class InvalidRide(BookingError):
    """Raised when ride creation input breaks a ride invariant."""
    code = "invalid_ride"
    default_message = "Ride details are invalid."


class RideNotFound(BookingError):
    """Raised when a ride cannot be found."""
    code = "ride_not_found"
    default_message = "Ride not found."


class SelfRequest(BookingError):
    """Raised when a driver requests a seat on their own ride."""
    code = "self_request"
    default_message = "You cannot request a seat on your own ride."


class DuplicateRequest(BookingError):
    """Raised when the user already holds a pending or confirmed request."""
    code = "duplicate_request"
    default_message = "You have already requested this ride."


class RideNotRequestable(BookingError):
    """Raised when a ride does not accept new requests.

    ``reason`` is one of the ``REASON_*`` constants.
    """
    code = "ride_not_requestable"

    REASON_DEPARTED = "departed"
    REASON_FULL = "full"
    REASON_CANCELLED = "cancelled"
    REASON_COMPLETED = "completed"

    MESSAGES = {
        REASON_DEPARTED: "This ride has already departed.",
        REASON_FULL: "This ride is full.",
        REASON_CANCELLED: "This ride has been cancelled.",
        REASON_COMPLETED: "This ride has already been completed.",
    }

    def __init__(self, reason, message=None):
        self.reason = reason
        super().__init__(message or self.MESSAGES.get(reason), reason=reason)


class NoSeatsAvailable(BookingError):
    """Raised when a seat reservation finds the ride full."""
    code = "no_seats_available"
    default_message = "No seats are available on this ride."


class NotRideOwner(BookingError):
    """Raised when a creator-only action is attempted by someone else."""
    code = "not_ride_owner"
    default_message = "Only the driver of this ride can do that."


class NotRequestOwner(BookingError):
    """Raised when a requester-only action is attempted by someone else."""
    code = "not_request_owner"
    default_message = "Only the passenger who made this request can do that."


class RequestNotFound(BookingError):
    code = "request_not_found"
    default_message = "Request not found."


class RequestNotPending(BookingError):
    code = "request_not_pending"
    default_message = "This request has already been decided."


class InvalidTransition(BookingError):
    """Raised when a status change is not allowed from the current state."""
    code = "invalid_transition"

    def __init__(self, current, target, message=None):
        self.current = current
        self.target = target
        super().__init__(
            message or f"Cannot change status from '{current}' to '{target}'.",
            current=current,
            target=target,
        )


class RideNotDeparted(InvalidTransition):
    """Raised when completing a ride before its departure time."""
    code = "ride_not_departed"

    def __init__(self, current, target):
        super().__init__(current, target, "This ride has not departed yet.")


class InvariantViolation(RuntimeError):
    """Stored ride data contradicts a core invariant (e.g. negative seats)."""
    pass
