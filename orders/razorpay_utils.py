# orders/razorpay_utils.py
import hashlib
import hmac
import logging
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
import requests

logger = logging.getLogger(__name__)


def to_paise(amount):
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class RazorpayAPI:
    """Razorpay REST client, HTTP basic auth with the key id and secret"""

    BASE_URL = getattr(settings, "RAZORPAY_BASE_URL", "https://api.razorpay.com/v1").strip()

    def __init__(self):
        self.key_id = settings.RAZORPAY_KEY_ID
        self.key_secret = settings.RAZORPAY_KEY_SECRET

    @property
    def is_configured(self):
        return bool(self.key_id and self.key_secret)

    def create_order(self, amount, receipt, currency="INR"):
        """
        Create a gateway order for `amount` rupees.
        Returns (success, order_dict or error)
        """
        if not self.is_configured:
            return False, "Razorpay not configured"

        try:
            payload = {
                "amount": to_paise(amount),
                "currency": currency,
                "receipt": str(receipt)[:40],
                "payment_capture": 1,
            }
            response = requests.post(
                f"{self.BASE_URL}/orders",
                json=payload,
                auth=(self.key_id, self.key_secret),
                timeout=15,
            )
            response.raise_for_status()
            data = response.json()

            if data.get("id"):
                logger.info(f"Razorpay order created: {data['id']} for receipt {receipt}")
                return True, {
                    "id": data["id"],
                    "amount": data.get("amount"),
                    "currency": data.get("currency", currency),
                    "receipt": data.get("receipt", receipt),
                }

            logger.error(f"Razorpay order creation failed: {data}")
            return False, data.get("error", {}).get("description", "Order creation failed")

        except Exception as e:
            logger.error(f"Razorpay order creation error: {str(e)}", exc_info=True)
            return False, str(e)

    def verify_payment_signature(self, order_id, payment_id, signature):
        """Checkout signature: HMAC-SHA256 of "order_id|payment_id" with the key secret"""
        if not (self.key_secret and order_id and payment_id and signature):
            return False
        message = f"{order_id}|{payment_id}".encode("utf-8")
        expected = hmac.new(self.key_secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature)

    @staticmethod
    def verify_webhook_signature(payload, signature):
        """Verify webhook signature using HMAC-SHA256 of the raw body"""
        try:
            secret = settings.RAZORPAY_WEBHOOK_SECRET
            if not secret or not signature:
                return False
            computed_signature = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
            return hmac.compare_digest(computed_signature, signature)
        except Exception as e:
            logger.error(f"Webhook verification error: {str(e)}")
            return False
