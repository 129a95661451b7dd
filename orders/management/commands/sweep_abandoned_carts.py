import logging
import time

from django.conf import settings
from django.core.management.base import BaseCommand

from orders import cart_tracking

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Flag abandoned carts, send WhatsApp reminders and evict stale sessions"

    def add_arguments(self, parser):
        parser.add_argument(
            "--loop",
            action="store_true",
            help="Keep sweeping every CART_SWEEP_INTERVAL_SECONDS",
        )

    def handle(self, *args, **options):
        if not options["loop"]:
            stats = cart_tracking.sweep()
            self.stdout.write(self.style.SUCCESS(f"Cart sweep: {stats}"))
            return

        interval = settings.CART_SWEEP_INTERVAL_SECONDS
        self.stdout.write(f"Sweeping abandoned carts every {interval}s")
        try:
            while True:
                try:
                    cart_tracking.sweep()
                except Exception as e:
                    logger.error(f"Cart sweep failed: {str(e)}", exc_info=True)
                time.sleep(interval)
        except KeyboardInterrupt:
            self.stdout.write("Stopped")
