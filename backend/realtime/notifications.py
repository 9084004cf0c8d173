"""
Notification helpers for sending dispatch events to connected clients.

Events are pushed into the Channels layer with group_send. Clients subscribe
to one or more groups:
    driver_<driver_id>   offers and offer outcomes for one driver
    user_<user_id>       job progress for the customer
    job_<job_id>         everyone following one job

Delivery is best effort: a failed send is logged and never raised, so a
notification problem can't roll back or block a dispatch decision.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)


# ---------------------- Event types ----------------------

JOB_OFFER = "job_offer"
JOB_ASSIGNED = "job_assigned"
JOB_STILL_PENDING = "job_still_pending"
OFFER_EXPIRED = "offer_expired"
NO_DRIVER_FOUND = "no_driver_found"
NO_DRIVERS_AVAILABLE = "no_drivers_available"
LOOKING_FOR_DRIVER = "looking_for_driver"
DRIVER_ARRIVED = "driver_arrived"
ARRIVED_AT_DESTINATION = "arrived_at_destination"
JOB_STARTED = "job_started"
JOB_COMPLETED = "job_completed"
JOB_CANCELLED = "job_cancelled"


def driver_group(driver_id: int) -> str:
    return f"driver_{driver_id}"


def user_group(user_id: int) -> str:
    return f"user_{user_id}"


def job_group(job_id: int) -> str:
    return f"job_{job_id}"


def job_payload(job, **extra) -> Dict[str, Any]:
    """Plain, serializable summary of a job for event payloads."""
    payload = {
        "job_id": job.id,
        "kind": job.kind,
        "status": job.status,
        "service_type": job.service_type,
        "pickup": {
            "latitude": float(job.pickup_latitude),
            "longitude": float(job.pickup_longitude),
            "address": job.pickup_address,
        },
        "driver_id": job.driver_id,
    }
    if job.destination_point is not None:
        payload["destination"] = {
            "latitude": float(job.destination_latitude),
            "longitude": float(job.destination_longitude),
            "address": job.destination_address,
        }
    payload.update(extra)
    return payload


class ChannelsNotifier:
    """Sends events to Channels groups through the default channel layer."""

    def __init__(self, channel_layer=None):
        self._channel_layer = channel_layer

    @property
    def channel_layer(self):
        if self._channel_layer is None:
            self._channel_layer = get_channel_layer()
        return self._channel_layer

    def notify(self, group: str, event_type: str, payload: Optional[Dict[str, Any]] = None) -> bool:
        """
        Send one event to a group.

        Returns:
            True if the message was handed to the channel layer, False otherwise
        """
        try:
            channel_layer = self.channel_layer
            if channel_layer is None:
                logger.warning("No channel layer available, dropping %s for %s", event_type, group)
                return False

            message = {"type": event_type, **(payload or {})}
            logger.debug("WS -> %s: %s", group, message)
            async_to_sync(channel_layer.group_send)(group, message)
            return True
        except Exception:
            logger.exception("Failed to send %s to %s", event_type, group)
            return False

    def notify_driver(self, driver_id: int, event_type: str, payload=None) -> bool:
        if not driver_id:
            return False
        return self.notify(driver_group(driver_id), event_type, payload)

    def notify_customer(self, job, event_type: str, message: str = "", **extra) -> bool:
        payload = job_payload(job, **extra)
        if message:
            payload["message"] = message
        sent = self.notify(user_group(job.customer_id), event_type, payload)
        self.notify(job_group(job.id), event_type, payload)
        return sent
