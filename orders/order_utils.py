# orders/order_utils.py
import logging
from datetime import timedelta

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from .cart_utils import calculate_order_totals, validate_items_against_db
from .models import Order, OrderItem, StoreSettings
from .utils import send_admin_order_notification, send_customer_order_confirmation, send_payment_verified_email
from .validators import PayloadError
from .whatsapp_utils import WhatsAppAPI, order_cancelled_message

logger = logging.getLogger(__name__)


class InvalidTransition(Exception):
    """Requested status change is not allowed from the order's current state"""


# ==================== ORDER CREATION ====================


def create_order(user, order_number, shipping_address, items, payment_method=Order.METHOD_UPI_QR,
                 include_tax=False):
    """
    Create an order and its items in one transaction.
    Prices and totals come from the catalog, never from the client.
    """
    lines = validate_items_against_db(items)
    totals = calculate_order_totals(lines, include_tax=include_tax)

    if Order.objects.filter(order_number=order_number).exists():
        raise PayloadError("Duplicate order number")

    try:
        with transaction.atomic():
            order = Order.objects.create(
                user=user,
                order_number=order_number,
                status=Order.STATUS_PENDING,
                payment_status=Order.PAYMENT_PENDING,
                payment_method=payment_method,
                subtotal=totals["subtotal"],
                shipping_fee=totals["shipping"],
                tax=totals["tax"],
                discount=totals["discount"],
                total_amount=totals["total"],
                shipping_address=shipping_address,
            )
            OrderItem.objects.bulk_create([
                OrderItem(
                    order=order,
                    product=line["product"],
                    product_name=line["name"],
                    quantity=line["quantity"],
                    price=line["price"],
                )
                for line in lines
            ])
    except IntegrityError:
        raise PayloadError("Duplicate order number")

    logger.info(f"Order {order.order_number} created for user {user.pk}: ₹{order.total_amount}")
    return order


def notify_order_placed(order):
    """Customer and admin emails for a new order; failures are logged only"""
    if not StoreSettings.is_enabled("emailNotifications"):
        return False

    items = list(order.items.all())
    sent, _ = send_customer_order_confirmation(order, items)
    send_admin_order_notification(order, items)
    if sent and not order.confirmation_sent:
        Order.objects.filter(id=order.id).update(confirmation_sent=True)
        order.confirmation_sent = True
    return sent


# ==================== STATE MACHINE ====================


def mark_order_paid(order_id, transaction_id="", verified_by="", gateway_payment_id=""):
    """
    pending -> verified / confirmed. Idempotent: a verified order is returned
    unchanged and the payment email goes out at most once.
    Returns (order, changed)
    """
    with transaction.atomic():
        order = Order.objects.select_for_update().get(id=order_id)

        if order.payment_status == Order.PAYMENT_VERIFIED:
            logger.info(f"Order {order.order_number} already verified")
            return order, False
        if order.payment_status == Order.PAYMENT_FAILED:
            raise InvalidTransition("Cannot verify a failed payment")

        order.payment_status = Order.PAYMENT_VERIFIED
        if order.status == Order.STATUS_PENDING:
            order.status = Order.STATUS_CONFIRMED
        order.verified_at = timezone.now()
        order.verified_by = verified_by or ""
        if transaction_id:
            order.upi_transaction_id = transaction_id
        if gateway_payment_id:
            order.gateway_payment_id = gateway_payment_id

        send_email = not order.payment_email_sent
        order.payment_email_sent = True
        order.save()

    logger.info(f"Order {order.order_number} marked paid by {verified_by or 'system'}")

    if send_email and StoreSettings.is_enabled("emailNotifications"):
        send_payment_verified_email(order)

    return order, True


def record_payment_failure(order_id, payment_id="", reason=""):
    """
    Note a failed gateway attempt. The order stays pending: the customer can
    retry on the same gateway order, and auto-cancel handles abandonment.
    """
    with transaction.atomic():
        order = Order.objects.select_for_update().get(id=order_id)
        if order.payment_status != Order.PAYMENT_PENDING:
            return order
        attempt = f"Payment attempt {payment_id or 'unknown'} failed"
        if reason:
            attempt = f"{attempt}: {reason}"
        order.notes = f"{order.notes}\n{attempt}".strip()
        order.save(update_fields=["notes", "updated_at"])

    logger.info(f"Order {order.order_number}: {attempt}")
    return order


def cancel_order(order_id, reason=""):
    """Cancel from pending/confirmed; a pending payment becomes failed"""
    with transaction.atomic():
        order = Order.objects.select_for_update().get(id=order_id)

        if order.status == Order.STATUS_CANCELLED:
            return order
        if not order.can_transition_to(Order.STATUS_CANCELLED):
            raise InvalidTransition(f"Cannot cancel an order that is {order.status}")

        order.status = Order.STATUS_CANCELLED
        if order.payment_status == Order.PAYMENT_PENDING:
            order.payment_status = Order.PAYMENT_FAILED
        if reason:
            order.notes = f"{order.notes}\n{reason}".strip()
        order.save()

    logger.info(f"Order {order.order_number} cancelled{': ' + reason if reason else ''}")
    return order


def update_order_status(order_id, new_status):
    valid_statuses = {choice for choice, _ in Order.STATUS_CHOICES}
    if new_status not in valid_statuses:
        raise InvalidTransition(f"Unknown status: {new_status}")
    if new_status == Order.STATUS_CANCELLED:
        return cancel_order(order_id)

    with transaction.atomic():
        order = Order.objects.select_for_update().get(id=order_id)
        if not order.can_transition_to(new_status):
            raise InvalidTransition(f"Cannot move order from {order.status} to {new_status}")
        if new_status == Order.STATUS_CONFIRMED and order.payment_status != Order.PAYMENT_VERIFIED:
            raise InvalidTransition("Payment must be verified before confirming")
        order.status = new_status
        order.save()

    logger.info(f"Order {order.order_number} moved to {new_status}")

    if new_status in (Order.STATUS_SHIPPED, Order.STATUS_DELIVERED):
        _send_shipping_update(order)

    return order


def _send_shipping_update(order):
    if not (StoreSettings.is_enabled("whatsappEnabled") and StoreSettings.is_enabled("shippingUpdatesEnabled")):
        return
    phone = order.customer_phone
    if not phone:
        return
    try:
        WhatsAppAPI().send_shipping_update(phone, order.customer_name or "there", order.order_number, order.status)
    except Exception as e:
        logger.error(f"Shipping update for {order.order_number} failed: {str(e)}")


# ==================== AUTO-CANCEL ====================


def auto_cancel_pending_orders(now=None):
    """
    Cancel orders still awaiting payment past the timeout.
    The conditional update only matches rows that are still pending, so
    an order verified in the meantime is never cancelled.
    """
    now = now or timezone.now()
    cutoff = now - timedelta(minutes=settings.PENDING_ORDER_TIMEOUT_MINUTES)

    candidates = list(
        Order.objects.filter(payment_status=Order.PAYMENT_PENDING, created_at__lte=cutoff)
        .exclude(status=Order.STATUS_CANCELLED)
        .values_list("id", flat=True)
    )

    cancelled = []
    for order_id in candidates:
        updated = Order.objects.filter(
            id=order_id,
            payment_status=Order.PAYMENT_PENDING,
            created_at__lte=cutoff,
        ).update(
            status=Order.STATUS_CANCELLED,
            payment_status=Order.PAYMENT_FAILED,
            updated_at=now,
        )
        if updated:
            cancelled.append(order_id)

    if not cancelled:
        return 0

    logger.info(f"Auto-cancelled {len(cancelled)} pending orders older than {cutoff.isoformat()}")

    if StoreSettings.is_enabled("whatsappEnabled"):
        whatsapp = WhatsAppAPI()
        for order in Order.objects.filter(id__in=cancelled):
            phone = order.customer_phone
            if not phone:
                continue
            try:
                whatsapp.send_text(phone, order_cancelled_message(order.customer_name or "there", order.order_number))
            except Exception as e:
                logger.error(f"Cancellation notice for {order.order_number} failed: {str(e)}")

    return len(cancelled)
