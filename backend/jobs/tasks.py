"""Celery tasks for dispatch background processing."""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task
def expire_assignment_task(assignment_id: int):
    """
    Celery task to expire a job offer after its window.

    Scheduled with eta=expires_at when the offer is sent. If the driver
    hasn't responded by then, the offer is expired and the next ranked
    driver gets the job. Running early is a no-op.
    """
    from services.dispatch import NotFoundError, build_coordinator

    try:
        expired = build_coordinator().assignments.expire_assignment(assignment_id)
        if expired:
            logger.info("Expired assignment %s", assignment_id)
        else:
            logger.debug("Assignment %s already responded or not yet due", assignment_id)
        return expired
    except NotFoundError:
        logger.warning("Assignment %s not found for expiry task", assignment_id)
    except Exception:
        logger.exception("Error expiring assignment %s", assignment_id)
    return False


@shared_task
def scan_expired_assignments_task():
    """Periodic sweep for offers whose countdown task never ran."""
    from services.dispatch import build_coordinator

    expired = build_coordinator().assignments.expire_due()
    if expired:
        logger.info("Expired %d overdue offers", expired)
    return expired


@shared_task
def process_reassignment_queue_task():
    """Periodic reassignment run."""
    from services.dispatch import build_coordinator

    return build_coordinator().reassignment.process_due()
