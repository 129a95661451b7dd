from django.core.management.base import BaseCommand

from orders.order_utils import auto_cancel_pending_orders


class Command(BaseCommand):
    help = "Cancel UPI orders whose payment is still pending past the timeout"

    def handle(self, *args, **options):
        cancelled = auto_cancel_pending_orders()
        self.stdout.write(self.style.SUCCESS(f"Cancelled {cancelled} pending orders"))
