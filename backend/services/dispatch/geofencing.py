"""
Geofence evaluation.

A geofence is a circle around a job's pickup or delivery point. Location
updates from the bound driver are checked against the job's active fences;
each fence fires at most once.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from django.db import transaction
from django.utils import timezone

from common.utils import calculate_distance, validate_coordinates
from realtime import notifications as events
from .policy import DispatchPolicy

logger = logging.getLogger(__name__)


@dataclass
class LocationUpdate:
    driver_id: int
    latitude: float
    longitude: float
    heading_deg: Optional[float] = None
    speed_kmh: Optional[float] = None
    timestamp: datetime = field(default_factory=timezone.now)
    active_job_id: Optional[int] = None


class GeofenceEngine:

    def __init__(self, repository, notifier, policy: DispatchPolicy):
        self.repository = repository
        self.notifier = notifier
        self.policy = policy

    def radius_for(self, fence_type: str) -> int:
        if fence_type == "pickup":
            return self.policy.pickup_geofence_radius_meters
        return self.policy.delivery_geofence_radius_meters

    def create_geofence(self, job, fence_type: str):
        """
        Create an active fence around the job's pickup or destination point.

        Returns the existing active fence of that type if there is one, and
        None when the job has no point for that type.
        """
        existing = self.repository.active_geofences(job.id, fence_type)
        if existing:
            return existing[0]

        point = job.pickup_point if fence_type == "pickup" else job.destination_point
        if point is None:
            logger.info("Job %s has no %s point, skipping geofence", job.id, fence_type)
            return None

        fence = self.repository.create_geofence(
            job=job,
            type=fence_type,
            center_latitude=point[0],
            center_longitude=point[1],
            radius_meters=self.radius_for(fence_type),
        )
        logger.debug("Created %s geofence %s for job %s", fence_type, fence.id, job.id)
        return fence

    def deactivate_for_job(self, job, fence_type: Optional[str] = None) -> int:
        return self.repository.deactivate_geofences(job.id, fence_type)

    def on_location_update(self, update: LocationUpdate) -> List[Dict]:
        """
        Check one location update against the driver's active job fences.

        Returns:
            List of fired events as {"geofence_id", "type", "job_id", "distance_m"}
        """
        try:
            lat, lon = validate_coordinates(update.latitude, update.longitude)
        except ValueError as exc:
            logger.warning("Ignoring location update from driver %s: %s", update.driver_id, exc)
            return []

        job = self.repository.active_job_for_driver(update.driver_id)
        if job is None:
            return []
        if update.active_job_id is not None and update.active_job_id != job.id:
            logger.warning(
                "Driver %s reported job %s but is bound to job %s",
                update.driver_id, update.active_job_id, job.id
            )
            return []

        fired = []
        for fence in self.repository.active_geofences(job.id):
            try:
                distance = calculate_distance(lat, lon, *fence.center)
                if distance > fence.radius_meters:
                    continue
                # the fence stays armed unless its job transition commits with it
                with transaction.atomic():
                    if not self.repository.trigger_geofence(fence.id, update.timestamp):
                        continue
                    self._record_arrival(job, fence, update)

                self._announce_arrival(job, fence, update)
                fired.append({
                    "geofence_id": fence.id,
                    "type": fence.type,
                    "job_id": job.id,
                    "distance_m": round(distance, 1),
                })
            except Exception:
                logger.exception("Error evaluating geofence %s for driver %s", fence.id, update.driver_id)

        return fired

    def _record_arrival(self, job, fence, update: LocationUpdate) -> None:
        if fence.type != "pickup":
            return
        moved = self.repository.update_job_status(
            job.id, ["assigned"], status="driver_arrived", arrived_at=update.timestamp
        )
        if moved:
            job.status = "driver_arrived"
            job.arrived_at = update.timestamp

    def _announce_arrival(self, job, fence, update: LocationUpdate) -> None:
        if fence.type == "pickup":
            logger.info("Driver %s arrived at pickup for job %s", update.driver_id, job.id)
            self.notifier.notify_customer(job, events.DRIVER_ARRIVED, "Your driver has arrived.")
        else:
            logger.info("Driver %s arrived at destination for job %s", update.driver_id, job.id)
            self.notifier.notify_customer(
                job, events.ARRIVED_AT_DESTINATION, "Your driver has reached the destination."
            )
