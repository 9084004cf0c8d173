from django.core.management.base import BaseCommand

from services.dispatch import build_coordinator


class Command(BaseCommand):
    help = "Run one matching pass for every due job in the reassignment queue."

    def add_arguments(self, parser):
        parser.add_argument(
            "--limit",
            type=int,
            default=None,
            help="Maximum number of queue items to process (default: REASSIGNMENT_BATCH_SIZE).",
        )

    def handle(self, *args, **options):
        summary = build_coordinator().reassignment.process_due(limit=options["limit"])

        self.stdout.write(
            self.style.SUCCESS(
                f"Processed {summary['processed']} item(s): {summary['resolved']} resolved, "
                f"{summary['retried']} retried, {summary['failed']} failed, {summary['errors']} errors."
            )
        )
