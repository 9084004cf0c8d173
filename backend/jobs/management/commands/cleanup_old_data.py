from django.core.management.base import BaseCommand
from django.db.models import Q
from django.utils import timezone
from datetime import timedelta

from drivers.models import DriverLocation
from jobs.models import Assignment, MatchingRequest, ReassignmentQueueItem
import logging

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Clean up resolved offers, finished jobs and old location history."

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            default=30,
            help="Delete records older than this many days (default: 30).",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be deleted without actually deleting.",
        )

    def handle(self, *args, **options):
        days = options["days"]
        dry_run = options["dry_run"]
        cutoff = timezone.now() - timedelta(days=days)

        # Resolved offers (pending ones are never touched)
        old_offers = Assignment.objects.filter(created_at__lt=cutoff).exclude(status="pending")

        # Finished jobs; cascades to their offers, ranked lists and geofences
        old_jobs = MatchingRequest.objects.filter(
            created_at__lt=cutoff,
            status__in=list(MatchingRequest.TERMINAL_STATUSES) + ["unmatched"],
        )

        old_queue_items = ReassignmentQueueItem.objects.filter(
            Q(status__in=["resolved", "failed"]) & Q(updated_at__lt=cutoff)
        )
        old_locations = DriverLocation.objects.filter(recorded_at__lt=cutoff)

        counts = {
            "offers": old_offers.count(),
            "jobs": old_jobs.count(),
            "queue items": old_queue_items.count(),
            "locations": old_locations.count(),
        }
        summary = ", ".join(f"{count} {name}" for name, count in counts.items())

        if dry_run:
            self.stdout.write(
                self.style.WARNING(f"DRY RUN: Would delete {summary} older than {days} days.")
            )
            return

        old_offers.delete()
        old_queue_items.delete()
        old_jobs.delete()
        old_locations.delete()
        logger.info("Cleaned up %s", summary)
        self.stdout.write(
            self.style.SUCCESS(f"Deleted {summary} older than {days} days.")
        )
