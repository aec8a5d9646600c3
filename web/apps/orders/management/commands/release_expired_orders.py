from datetime import timedelta

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from apps.orders import providers


class Command(BaseCommand):
    help = "Cancel PENDING orders whose payment window has passed and return their stock."

    def add_arguments(self, parser):
        parser.add_argument(
            "--minutes",
            type=int,
            default=None,
            help="Payment window in minutes (default: PENDING_ORDER_TTL_MINUTES).",
        )

    def handle(self, *args, **options):
        minutes = options["minutes"]
        if minutes is None:
            minutes = getattr(settings, "PENDING_ORDER_TTL_MINUTES", 15)
        if minutes < 0:
            raise CommandError("--minutes must not be negative")

        expired = providers.get_order_ledger().expire_pending(timedelta(minutes=minutes))
        self.stdout.write(f"released {len(expired)} expired order(s)")
