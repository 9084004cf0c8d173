from django.core.management.base import BaseCommand

from services.dispatch import build_coordinator


class Command(BaseCommand):
    help = "Expire job offers past their response window and offer the job to the next driver."

    def handle(self, *args, **options):
        expired_count = build_coordinator().assignments.expire_due()

        self.stdout.write(
            self.style.SUCCESS(f"Expired {expired_count} offer(s).")
        )
