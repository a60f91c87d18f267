from django.core.management.base import BaseCommand

from services.matching import expire_stale_offers
from services.trip_management import dispatch_due_scheduled_trips


class Command(BaseCommand):
    help = "Expire trip offers that have been waiting too long, notify the next driver and dispatch due scheduled trips."

    def add_arguments(self, parser):
        parser.add_argument(
            "--timeout",
            type=int,
            default=None,
            help="Seconds before a sent offer expires (default: the dispatch config offer timeout).",
        )
        parser.add_argument(
            "--skip-scheduled",
            action="store_true",
            help="Only expire offers, do not dispatch scheduled trips.",
        )

    def handle(self, *args, **options):
        expired_count = expire_stale_offers(timeout_seconds=options["timeout"])
        dispatched_count = 0
        if not options["skip_scheduled"]:
            dispatched_count = dispatch_due_scheduled_trips()

        self.stdout.write(
            self.style.SUCCESS(
                f"Expired {expired_count} offer(s); dispatched {dispatched_count} scheduled trip(s)."
            )
        )
