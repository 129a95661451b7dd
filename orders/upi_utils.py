# orders/upi_utils.py
import math
import re
from datetime import timedelta
from urllib.parse import quote, urlencode

from django.conf import settings

GPAY_PACKAGE = "com.google.android.apps.nbu.paisa.user"


def _format_amount(amount):
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return "0.00"
    if not math.isfinite(value):
        return "0.00"
    return f"{value:.2f}"


def build_upi_link(amount, order_number, payee_id=None, merchant_name=None):
    """
    upi://pay deep link understood by every UPI app.
    Merchant name keeps letters, digits and spaces (max 25 chars), the
    note is "Order <number>" (max 40), the reference max 35.
    """
    payee_id = payee_id or settings.UPI_ID
    merchant_name = merchant_name or settings.STORE_NAME
    clean_name = re.sub(r"[^A-Za-z0-9 ]", "", merchant_name)[:25]

    params = {
        "pa": payee_id,
        "pn": clean_name,
        "am": _format_amount(amount),
        "cu": "INR",
        "tn": f"Order {order_number}"[:40],
        "tr": str(order_number)[:35],
    }
    return "upi://pay?" + urlencode(params, quote_via=quote)


def build_upi_intent(link):
    """Android intent link that opens Google Pay directly"""
    return f"intent:{link}#Intent;scheme=upi;package={GPAY_PACKAGE};end"


def build_qr_image_url(link, size=320):
    return f"{settings.UPI_QR_BASE_URL}?size={size}x{size}&data={quote(link, safe='')}"


def upi_payment_bundle(order):
    link = build_upi_link(order.total_amount, order.order_number)
    expires_at = order.created_at + timedelta(minutes=settings.PENDING_ORDER_TIMEOUT_MINUTES)
    return {
        "link": link,
        "intent": build_upi_intent(link),
        "qr_image_url": build_qr_image_url(link),
        "amount": _format_amount(order.total_amount),
        "payee": settings.UPI_ID,
        "expires_at": expires_at.isoformat(),
    }
