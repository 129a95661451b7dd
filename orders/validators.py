# orders/validators.py
import json
import re
import uuid

from django.core.exceptions import ValidationError
from django.core.validators import validate_email


class PayloadError(ValueError):
    """Malformed request payload, reported as HTTP 400"""


def validate_phone_number(phone):
    """Validate Indian mobile number format"""
    pattern = re.compile(r'^[6-9]\d{9}$')
    digits = re.sub(r'[\s-]', '', phone or '')
    if digits.startswith('+91'):
        digits = digits[3:]
    return pattern.match(digits) is not None


def validate_pincode(pincode):
    """Validate 6-digit pincode"""
    return len(pincode) == 6 and pincode.isdigit()


def validate_email_address(email):
    try:
        validate_email(email)
    except ValidationError:
        return False
    return True


def validate_whatsapp_number(number):
    """E.164: plus sign, no leading zero, up to 15 digits"""
    return re.match(r'^\+[1-9]\d{1,14}$', number or '') is not None


def parse_json_body(request):
    try:
        data = json.loads(request.body or b'{}')
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise PayloadError("Invalid JSON body")
    if not isinstance(data, dict):
        raise PayloadError("Invalid payload")
    return data


def parse_uuid(value, field="id"):
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        raise PayloadError(f"Invalid {field}")


def parse_quantity(value, allow_zero=False):
    # bools are ints in Python, reject them explicitly
    if isinstance(value, bool):
        raise PayloadError("Invalid quantity")
    try:
        quantity = int(value)
    except (ValueError, TypeError):
        raise PayloadError("Invalid quantity")
    if quantity != value and not isinstance(value, str):
        raise PayloadError("Invalid quantity")
    if quantity < 0 or (quantity == 0 and not allow_zero):
        raise PayloadError("Invalid quantity")
    return quantity


def parse_order_items(raw_items, id_field="product_id"):
    """
    Normalise [{product_id, quantity, price?}] into
    [{"product_id": UUID, "quantity": int}]. Client prices are dropped.
    """
    if not isinstance(raw_items, list):
        raise PayloadError("Invalid payload")

    items = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise PayloadError("Invalid payload")
        items.append({
            "product_id": parse_uuid(raw.get(id_field), id_field),
            "quantity": parse_quantity(raw.get("quantity")),
        })
    return items


def parse_order_payload(data):
    """Checkout payload shared by the UPI and gateway flows"""
    order_number = data.get("orderNumber")
    if not isinstance(order_number, str) or len(order_number.strip()) < 3:
        raise PayloadError("Invalid payload")

    amount = data.get("amount")
    if amount is not None and (isinstance(amount, bool) or not isinstance(amount, (int, float)) or amount < 0):
        raise PayloadError("Invalid payload")

    shipping_address = data.get("shippingAddress")
    if not isinstance(shipping_address, dict) or not shipping_address:
        raise PayloadError("Missing required fields")

    items = parse_order_items(data.get("items"))
    if not items:
        raise PayloadError("Invalid payload")

    return {
        "order_number": order_number.strip(),
        "shipping_address": shipping_address,
        "items": items,
    }
