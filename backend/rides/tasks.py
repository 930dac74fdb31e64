"""Celery tasks for ride-related background processing."""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task
def dispatch_ride_event_task(payload: dict):
    """
    Deliver a booking event to the channel layer.

    Scheduled by ``services.booking.events.publish_events`` once the
    transaction that produced the event has committed.
    """
    from rides.notifications import dispatch_ride_event

    try:
        sent = dispatch_ride_event(payload)
        logger.info(
            "Dispatched %s for ride %s to %d recipient(s)",
            payload.get("event_type"), payload.get("ride_id"), sent,
        )
        return sent
    except Exception:
        logger.exception("Failed to dispatch %s for ride %s",
                         payload.get("event_type"), payload.get("ride_id"))
        raise


@shared_task
def expire_departed_requests_task():
    """Reject pending requests on rides that already left.

    Run by celery beat, see ``CELERY_BEAT_SCHEDULE`` in settings.
    """
    from services.booking import expire_departed_requests

    expired = expire_departed_requests()
    logger.info("Expired %d pending request(s) on departed rides", expired)
    return expired
