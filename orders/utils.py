import logging
from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)

DIVIDER = "═══════════════════════════════════════"


def _format_address(address):
    address = address or {}
    line1 = address.get("address_line1") or address.get("address") or address.get("street") or ""
    line2 = address.get("address_line2") or ""
    city = address.get("city", "")
    state = address.get("state", "")
    pincode = address.get("pincode") or address.get("pin_code") or address.get("zipCode") or ""
    lines = [line for line in (line1, line2) if line]
    lines.append(f"{city}, {state} - {pincode}".strip(" ,-"))
    return "\n".join(lines)


def _items_details(items):
    return "\n".join([
        f"• {item.product_name} (Qty: {item.quantity}, Price: ₹{item.price})"
        for item in items
    ])


def send_customer_order_confirmation(order, items):
    """Order placed email with item lines and UPI next steps"""
    recipient = order.customer_email
    if not recipient:
        return False, "No customer email"

    try:
        message = f"""
Hello {order.customer_name or 'there'},

Thank you for shopping with {settings.STORE_NAME}! Your order has been received.

{DIVIDER}

📋 ORDER DETAILS:
Order Number: {order.order_number}
Order Date: {order.created_at.strftime('%d-%b-%Y %I:%M %p')}
Payment Method: {order.get_payment_method_display()}

📦 ITEMS:
{_items_details(items)}

💳 PAYMENT SUMMARY:
Subtotal: ₹{order.subtotal}
Shipping: ₹{order.shipping_fee}
Tax: ₹{order.tax}
TOTAL: ₹{order.total_amount}

📍 SHIPPING ADDRESS:
{_format_address(order.shipping_address)}

{DIVIDER}

NEXT STEPS:
1. Complete the UPI payment of ₹{order.total_amount} using the QR code or payment link.
2. Upload your payment screenshot or UPI transaction ID on the order page.
3. We will confirm your order as soon as the payment is verified.

Unpaid orders are cancelled automatically after {settings.PENDING_ORDER_TIMEOUT_MINUTES} minutes.

Need help? Call {settings.SUPPORT_PHONE} or write to {settings.SUPPORT_EMAIL}.

{settings.STORE_NAME}
        """.strip()

        send_mail(
            subject=f"Order Received - {order.order_number} - {settings.STORE_NAME}",
            message=message,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[recipient],
            fail_silently=False,
        )

        logger.info(f"Order confirmation email sent for {order.order_number}")
        return True, "Customer email sent successfully"

    except Exception as e:
        logger.error(f"Order confirmation email failed for {order.order_number}: {str(e)}")
        return False, str(e)


def send_payment_verified_email(order):
    recipient = order.customer_email
    if not recipient:
        return False, "No customer email"

    try:
        message = f"""
Hello {order.customer_name or 'there'},

✅ We have received your payment of ₹{order.total_amount} for order {order.order_number}.

Your order is now confirmed and will be packed shortly. You will get shipping
updates on WhatsApp and email.

Transaction reference: {order.upi_transaction_id or order.gateway_payment_id or '-'}

Thank you for choosing {settings.STORE_NAME}!
        """.strip()

        send_mail(
            subject=f"Payment Confirmed - {order.order_number} - {settings.STORE_NAME}",
            message=message,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[recipient],
            fail_silently=False,
        )

        logger.info(f"Payment verified email sent for {order.order_number}")
        return True, "Payment email sent successfully"

    except Exception as e:
        logger.error(f"Payment verified email failed for {order.order_number}: {str(e)}")
        return False, str(e)


def send_admin_order_notification(order, items):
    """Send detailed email to admin about new order"""
    if not settings.ADMIN_ORDER_EMAIL:
        return False, "ADMIN_ORDER_EMAIL not configured"

    try:
        address = order.shipping_address or {}
        message = f"""
Hello Admin,

A new order has been placed on {settings.STORE_NAME}!

{DIVIDER}

📋 ORDER DETAILS:
Order Number: {order.order_number}
Order Date: {order.created_at.strftime('%d-%b-%Y %I:%M %p')}
Status: {order.status.upper()} / payment {order.payment_status.upper()}
Payment Method: {order.get_payment_method_display()}

👤 CUSTOMER DETAILS:
Name: {order.customer_name}
Phone: {order.customer_phone}
Email: {order.customer_email}

📍 SHIPPING ADDRESS:
{_format_address(address)}

{DIVIDER}

📦 ORDER ITEMS:
{_items_details(items)}

💳 PAYMENT SUMMARY:
Subtotal: ₹{order.subtotal}
Shipping: ₹{order.shipping_fee}
Tax: ₹{order.tax}
Discount: ₹{order.discount}
TOTAL: ₹{order.total_amount}

{settings.STORE_NAME} System
        """.strip()

        send_mail(
            subject=f"🛒 New Order Received - {order.order_number}",
            message=message,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[settings.ADMIN_ORDER_EMAIL],
            fail_silently=False,
        )

        logger.info(f"Admin notification sent for {order.order_number}")
        return True, "Admin email sent successfully"

    except Exception as e:
        logger.error(f"Admin notification failed: {str(e)}")
        return False, str(e)
