import logging
import os

from django.db import connection
from django.http import JsonResponse
from django.views.decorators.http import require_GET

from accounts.decorators import api_admin_required
from accounts.models import Profile
from catalog.models import Product
from orders.models import Order

logger = logging.getLogger(__name__)

INTEGRATION_ENV_VARS = [
    "SECRET_KEY",
    "DB_NAME",
    "SITE_URL",
    "UPI_ID",
    "RAZORPAY_KEY_ID",
    "RAZORPAY_KEY_SECRET",
    "RAZORPAY_WEBHOOK_SECRET",
    "WHATSAPP_ACCESS_TOKEN",
    "WHATSAPP_PHONE_NUMBER_ID",
    "WHATSAPP_BUSINESS_ACCOUNT_ID",
    "WHATSAPP_WEBHOOK_VERIFY_TOKEN",
    "EMAIL_HOST_PASSWORD",
    "DEFAULT_FROM_EMAIL",
    "ADMIN_ORDER_EMAIL",
    "CRON_SECRET",
]


@require_GET
def test_connection(request):
    """Database reachability and row counts"""
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
        return JsonResponse({
            "success": True,
            "database": connection.vendor,
            "counts": {
                "products": Product.objects.filter(active=True).count(),
                "orders": Order.objects.count(),
                "profiles": Profile.objects.count(),
            },
        })
    except Exception as e:
        logger.error(f"Connection test failed: {str(e)}", exc_info=True)
        return JsonResponse({"success": False, "error": "Database unavailable"}, status=500)


@require_GET
@api_admin_required
def env_check(request):
    """Which integration variables are set, never their values"""
    return JsonResponse({
        "success": True,
        "env": {name: bool(os.getenv(name)) for name in INTEGRATION_ENV_VARS},
    })
