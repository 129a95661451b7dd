# orders/whatsapp_utils.py
import logging
import re
import time
from decimal import Decimal

from django.conf import settings
import requests

logger = logging.getLogger(__name__)


def _rupees(amount):
    """Rupee amount for message bodies, no paise when whole"""
    value = Decimal(str(amount or 0))
    if value == value.to_integral_value():
        return f"₹{int(value):,}"
    return f"₹{value:,.2f}"


class WhatsAppAPI:
    """WhatsApp Business Cloud API client (Graph API)"""

    BASE_URL = getattr(settings, "WHATSAPP_BASE_URL", "https://graph.facebook.com/v18.0").strip()

    def __init__(self):
        self.access_token = settings.WHATSAPP_ACCESS_TOKEN
        self.phone_number_id = settings.WHATSAPP_PHONE_NUMBER_ID
        self.business_account_id = getattr(settings, "WHATSAPP_BUSINESS_ACCOUNT_ID", "")

    @property
    def is_configured(self):
        return bool(self.access_token and self.phone_number_id)

    def get_headers(self):
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def format_phone_number(phone):
        """Digits only, 10-digit Indian numbers get the 91 country code"""
        cleaned = re.sub(r"\D", "", phone or "")
        if len(cleaned) == 10:
            return f"91{cleaned}"
        return cleaned

    def send_message(self, message):
        """
        POST a message payload to /{phone_number_id}/messages.
        Returns (success, message_id or error)
        """
        if not self.is_configured:
            logger.warning("WhatsApp credentials not configured, message not sent")
            return False, "WhatsApp service not configured"

        url = f"{self.BASE_URL}/{self.phone_number_id}/messages"
        payload = {"messaging_product": "whatsapp", **message}

        for attempt in range(2):
            try:
                response = requests.post(url, json=payload, headers=self.get_headers(), timeout=10)
                data = response.json() if response.content else {}

                if not response.ok:
                    logger.error(f"WhatsApp API error ({response.status_code}): {data}")
                    return False, data.get("error", {}).get("message", "Failed to send WhatsApp message")

                message_id = (data.get("messages") or [{}])[0].get("id")
                logger.info(f"WhatsApp message sent: {message_id} to {payload.get('to')}")
                return True, message_id

            except requests.exceptions.Timeout:
                logger.warning(f"WhatsApp API timeout (attempt {attempt + 1})")
                if attempt == 1:
                    return False, "WhatsApp API timeout"
                time.sleep(1)
            except Exception as e:
                logger.error(f"WhatsApp send error: {str(e)}")
                return False, str(e)

    def send_text(self, to, body):
        return self.send_message({
            "to": self.format_phone_number(to),
            "type": "text",
            "text": {"body": body},
        })

    def send_template(self, to, template_name, parameters, language="en"):
        return self.send_message({
            "to": self.format_phone_number(to),
            "type": "template",
            "template": {
                "name": template_name,
                "language": {"code": language},
                "components": [{
                    "type": "body",
                    "parameters": [{"type": "text", "text": str(value)} for value in parameters],
                }],
            },
        })

    # ==================== STORE MESSAGES ====================

    def send_cart_notification(self, to, customer_name, cart_items):
        return self.send_text(to, cart_update_message(customer_name, cart_items))

    def send_cart_abandonment_reminder(self, to, customer_name, cart_items, cart_total):
        items_list = "\n".join(
            f"{item.get('name')} ({_rupees(item.get('price'))} x {item.get('quantity')})" for item in cart_items
        )
        return self.send_template(
            to, "cart_abandonment_reminder", [customer_name, items_list, _rupees(cart_total)]
        )

    def send_order_confirmation(self, to, customer_name, order_number, order_total):
        return self.send_template(
            to, "order_confirmation", [customer_name, order_number, _rupees(order_total)]
        )

    def send_shipping_update(self, to, customer_name, order_number, status, tracking_number=""):
        return self.send_text(to, shipping_update_message(customer_name, order_number, status, tracking_number))

    def send_welcome_message(self, to, customer_name):
        return self.send_template(to, "welcome_message", [customer_name])


# ==================== MESSAGE BODIES ====================


def cart_update_message(customer_name, cart_items):
    item_count = sum(int(item.get("quantity", 0)) for item in cart_items)
    cart_total = sum(Decimal(str(item.get("price", 0))) * int(item.get("quantity", 0)) for item in cart_items)
    items_list = "\n".join(f"• {item.get('name')} ({_rupees(item.get('price'))})" for item in cart_items[:3])
    more_items = f"\n...and {len(cart_items) - 3} more items" if len(cart_items) > 3 else ""

    return (
        f"🛍️ Hi {customer_name}!\n\n"
        f"You have {item_count} item(s) in your cart:\n\n"
        f"{items_list}{more_items}\n\n"
        f"💰 Total: {_rupees(cart_total)}\n\n"
        f"Complete your purchase now: {settings.SITE_URL}/cart\n\n"
        f"- Team {settings.STORE_NAME}"
    )


def shipping_update_message(customer_name, order_number, status, tracking_number=""):
    headline = "has been delivered! 🎉" if status == "delivered" else "has been shipped! 🚚"
    tracking = f"\n🚚 Tracking Number: {tracking_number}" if tracking_number else ""
    return (
        f"📦 Great news {customer_name}!\n\n"
        f"Your order #{order_number} {headline}{tracking}\n\n"
        f"Track your order: {settings.SITE_URL}/account\n\n"
        f"- Team {settings.STORE_NAME}"
    )


def order_cancelled_message(customer_name, order_number):
    return (
        f"Hi {customer_name}, your order #{order_number} was cancelled because the payment "
        f"was not received within {settings.PENDING_ORDER_TIMEOUT_MINUTES} minutes.\n\n"
        f"Your cart is still waiting: {settings.SITE_URL}/cart\n\n"
        f"- Team {settings.STORE_NAME}"
    )
