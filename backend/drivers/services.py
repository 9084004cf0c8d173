import logging

from django.db.models import Count, Q
from django.utils import timezone

from drivers.models import DriverProfile, DriverLocation

logger = logging.getLogger(__name__)


class DriverStatusError(Exception):
    pass


# DRIVER STATUS UPDATE
def update_driver_status(profile: DriverProfile, new_status: str):
    """
    Update driver availability status.

    A driver bound to an unfinished job cannot go available or offline;
    the job has to be completed or cancelled first.
    """
    if new_status not in dict(DriverProfile.STATUS_CHOICES):
        raise DriverStatusError(f"Unknown status '{new_status}'")

    if new_status != "busy" and has_active_job(profile):
        raise DriverStatusError("Finish or cancel your current job before changing status")

    profile.status = new_status
    profile.save(update_fields=["status"])
    logger.info("Driver %s is now %s", profile.id, new_status)

    return profile


def has_active_job(profile: DriverProfile) -> bool:
    from jobs.models import MatchingRequest

    return profile.jobs.filter(status__in=MatchingRequest.ACTIVE_STATUSES).exists()


def update_driver_location(profile: DriverProfile, lat, lon, heading_deg=None, speed_kmh=None,
                           job_id=None, recorded_at=None, history_limit=50):
    """
    Store the driver's latest position and append it to the bounded history.

    Only the newest history_limit rows are kept per driver.
    """
    recorded_at = recorded_at or timezone.now()

    profile.current_latitude = round(float(lat), 6)
    profile.current_longitude = round(float(lon), 6)
    profile.last_location_update = recorded_at
    profile.save(update_fields=["current_latitude", "current_longitude", "last_location_update"])

    location = DriverLocation.objects.create(
        driver=profile,
        job_id=job_id,
        latitude=round(float(lat), 6),
        longitude=round(float(lon), 6),
        heading_deg=heading_deg,
        speed_kmh=speed_kmh,
        recorded_at=recorded_at,
    )

    stale_ids = list(
        DriverLocation.objects.filter(driver=profile)
        .order_by("-recorded_at", "-id")
        .values_list("id", flat=True)[history_limit:]
    )
    if stale_ids:
        DriverLocation.objects.filter(id__in=stale_ids).delete()

    return location


def refresh_driver_metrics(driver_id: int, response_time_seconds=None):
    """
    Recompute acceptance and completion rates from the driver's history.

    acceptance_rate = accepted / answered-or-expired offers
    completion_rate = finished jobs / jobs ever bound to the driver
    """
    from jobs.models import Assignment, MatchingRequest

    offers = Assignment.objects.filter(driver_id=driver_id).aggregate(
        accepted=Count("id", filter=Q(status="accepted")),
        resolved=Count("id", filter=Q(status__in=["accepted", "rejected", "expired"])),
    )
    jobs = MatchingRequest.objects.filter(driver_id=driver_id).aggregate(
        finished=Count("id", filter=Q(status__in=["delivered", "completed"])),
        closed=Count("id", filter=Q(status__in=["delivered", "completed", "cancelled"])),
    )

    update = {}
    if offers["resolved"]:
        update["acceptance_rate"] = offers["accepted"] / offers["resolved"]
    if jobs["closed"]:
        update["completion_rate"] = jobs["finished"] / jobs["closed"]
    if response_time_seconds is not None:
        update["last_response_time_seconds"] = float(response_time_seconds)

    if update:
        DriverProfile.objects.filter(id=driver_id).update(**update)
    return update
