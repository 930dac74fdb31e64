"""
Push booking events to the channel layer.

Each recipient has a personal group ``user_<id>``; whatever is subscribed to
that group (a websocket consumer, a push gateway) takes care of delivery.
"""

import logging
from typing import Any, Dict

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)


def user_group(user_id: int) -> str:
    return f"user_{user_id}"


def notify_user_event(user_id: int, payload: Dict[str, Any]) -> bool:
    """
    Send one event to a user's personal group.

    Args:
        user_id: recipient user ID
        payload: event data; ``event_type`` becomes the consumer handler name

    Returns:
        True if sent, False if no channel layer is configured
    """
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.warning("No channel layer available, dropping %s for user %s",
                       payload.get("event_type"), user_id)
        return False

    message = {
        **payload,
        "type": payload["event_type"],
    }
    logger.debug("WS -> user_%s: %s", user_id, message)
    async_to_sync(channel_layer.group_send)(user_group(user_id), message)
    return True


def dispatch_ride_event(payload: Dict[str, Any]) -> int:
    """Fan an event out to all its recipients. Returns how many were sent."""
    sent = 0
    for user_id in payload.get("recipient_ids", []):
        if notify_user_event(user_id, payload):
            sent += 1
    return sent
