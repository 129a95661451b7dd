import hmac
import json
import logging
import os
import re
import time

from django import forms
from django.conf import settings
from django.core.cache import cache
from django.core.files.storage import default_storage
from django.db.models import Q
from django.http import HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from accounts.decorators import api_admin_required, api_login_required
from accounts.models import Profile
from catalog.models import Product

from . import cart_tracking
from .cart_utils import (
    add_item,
    cart_storage_key,
    cart_summary,
    get_cart,
    load_server_cart,
    remove_item,
    save_cart,
    sync_user_cart,
    update_quantity,
)
from .models import Order, StoreSettings
from .order_utils import (
    InvalidTransition,
    auto_cancel_pending_orders,
    cancel_order,
    create_order,
    mark_order_paid,
    notify_order_placed,
    record_payment_failure,
)
from .razorpay_utils import RazorpayAPI, to_paise
from .upi_utils import upi_payment_bundle
from .validators import (
    PayloadError,
    parse_json_body,
    parse_order_items,
    parse_order_payload,
    parse_quantity,
    parse_uuid,
    validate_whatsapp_number,
)
from .whatsapp_utils import WhatsAppAPI

logger = logging.getLogger(__name__)

# ==================== CART API ====================


@require_http_methods(["GET", "POST"])
def cart(request):
    """GET the current cart, POST replaces the signed-in user's stored cart"""
    if request.method == "GET":
        if request.user.is_authenticated:
            items = load_server_cart(request.user)
        else:
            items = get_cart(request)
        return JsonResponse({"success": True, **cart_summary(items)})

    if not request.user.is_authenticated:
        return JsonResponse({"success": False, "error": "Unauthorized"}, status=401)

    try:
        data = parse_json_body(request)
        items = parse_order_items(data.get("items", []), id_field="id")
        synced = sync_user_cart(request.user, items)
        request.session[cart_storage_key(request.user)] = load_server_cart(request.user)
        request.session.modified = True
        return JsonResponse({"success": True, "count": synced})
    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)
    except Exception as e:
        logger.error(f"Cart sync error: {str(e)}", exc_info=True)
        return JsonResponse({"success": False, "error": "Failed to sync cart"}, status=500)


@require_POST
def add_to_cart(request):
    """Add a product to the cart at its catalog price"""
    try:
        data = parse_json_body(request)
        product_id = parse_uuid(data.get("productId"), "productId")
        quantity = parse_quantity(data.get("quantity", 1))

        product = Product.objects.filter(id=product_id, active=True).first()
        if product is None:
            return JsonResponse({"success": False, "error": "Product not found"}, status=404)

        items = add_item(get_cart(request), product, quantity)
        save_cart(request, items)
        return JsonResponse({"success": True, **cart_summary(items)})

    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)
    except Exception as e:
        logger.error(f"Add to cart error: {str(e)}")
        return JsonResponse({"success": False, "error": "Failed to add item"}, status=500)


@require_POST
def update_cart_quantity(request):
    """Update item quantity, zero removes the line"""
    try:
        data = parse_json_body(request)
        product_id = str(parse_uuid(data.get("productId"), "productId"))
        quantity = parse_quantity(data.get("quantity"), allow_zero=True)

        items = get_cart(request)
        if not any(item["id"] == product_id for item in items):
            return JsonResponse({"success": False, "error": "Item not found"}, status=404)

        items = update_quantity(items, product_id, quantity)
        save_cart(request, items)
        return JsonResponse({"success": True, **cart_summary(items)})

    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)
    except Exception as e:
        logger.error(f"Update quantity error: {str(e)}")
        return JsonResponse({"success": False, "error": str(e)}, status=500)


@require_POST
def remove_from_cart(request):
    try:
        data = parse_json_body(request)
        product_id = str(parse_uuid(data.get("productId"), "productId"))

        items = get_cart(request)
        if not any(item["id"] == product_id for item in items):
            return JsonResponse({"success": False, "error": "Item not found"}, status=404)

        items = remove_item(items, product_id)
        save_cart(request, items)
        return JsonResponse({"success": True, **cart_summary(items)})

    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)
    except Exception as e:
        logger.error(f"Remove from cart error: {str(e)}")
        return JsonResponse({"success": False, "error": str(e)}, status=500)


@require_POST
def clear_cart(request):
    """Clear all items from cart"""
    save_cart(request, [])
    return JsonResponse({"success": True, **cart_summary([])})


@require_POST
def cart_notify(request):
    """Record a cart snapshot for abandonment reminders"""
    try:
        data = parse_json_body(request)
        session_id = data.get("sessionId")
        cart_items = data.get("cartItems")
        if not session_id or cart_items is None or not isinstance(cart_items, list):
            return JsonResponse({"success": False, "error": "Missing required fields"}, status=400)

        cart_tracking.track_cart_update(str(session_id), cart_items, data.get("userInfo") or {})
        return JsonResponse({"success": True})

    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)
    except cart_tracking.TrackerBusy:
        return JsonResponse({"success": False, "error": "Busy, please retry"}, status=503)
    except Exception as e:
        logger.error(f"Cart notification error: {str(e)}", exc_info=True)
        return JsonResponse({"success": False, "error": "Internal server error"}, status=500)


# ==================== ORDERS ====================


def _get_user_order(request, raw_id):
    """Order owned by the current user, or None"""
    try:
        order_id = parse_uuid(raw_id, "id")
    except PayloadError:
        return None
    return Order.objects.filter(id=order_id, user=request.user).first()


@require_POST
@api_login_required
def create_upi_order(request):
    """Create a pending UPI order priced from the catalog"""
    try:
        payload = parse_order_payload(parse_json_body(request))
        order = create_order(
            request.user,
            payload["order_number"],
            payload["shipping_address"],
            payload["items"],
            payment_method=Order.METHOD_UPI_QR,
        )
    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)
    except Exception as e:
        logger.error(f"UPI order error: {str(e)}", exc_info=True)
        return JsonResponse({"success": False, "error": "Internal error"}, status=500)

    # Non-blocking
    try:
        notify_order_placed(order)
    except Exception as e:
        logger.error(f"Order notification error for {order.order_number}: {str(e)}")

    return JsonResponse({
        "success": True,
        "orderId": str(order.id),
        "amount": float(order.total_amount),
        "upi": upi_payment_bundle(order),
    })


@require_GET
@api_login_required
def order_list(request):
    orders = Order.objects.filter(user=request.user).prefetch_related("items")
    return JsonResponse({"success": True, "orders": [order.to_dict(include_items=True) for order in orders]})


@require_GET
@api_login_required
def order_detail(request):
    order_id = request.GET.get("id")
    if not order_id:
        return JsonResponse({"success": False, "error": "Missing id"}, status=400)

    order = _get_user_order(request, order_id)
    if order is None:
        return JsonResponse({"success": False, "error": "Not found"}, status=404)

    return JsonResponse({"success": True, "order": order.to_dict(include_items=True)})


@require_GET
@api_login_required
def order_upi_link(request):
    order = _get_user_order(request, request.GET.get("id"))
    if order is None:
        return JsonResponse({"success": False, "error": "Not found"}, status=404)
    if order.payment_status != Order.PAYMENT_PENDING or order.status == Order.STATUS_CANCELLED:
        return JsonResponse({"success": False, "error": "Order is not awaiting payment"}, status=400)

    return JsonResponse({"success": True, "upi": upi_payment_bundle(order)})


@require_POST
@api_login_required
def update_payment_proof(request):
    try:
        data = parse_json_body(request)
    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)

    if not data.get("id"):
        return JsonResponse({"success": False, "error": "Missing id"}, status=400)

    order = _get_user_order(request, data.get("id"))
    if order is None:
        return JsonResponse({"success": False, "error": "Not found"}, status=404)

    updates = {}
    if data.get("upi_transaction_id") is not None:
        updates["upi_transaction_id"] = str(data["upi_transaction_id"]).strip()[:100]
    if data.get("payment_screenshot_url") is not None:
        updates["payment_screenshot_url"] = str(data["payment_screenshot_url"]).strip()[:500]

    if updates:
        Order.objects.filter(id=order.id).update(**updates)
        logger.info(f"Payment proof updated for {order.order_number}")

    return JsonResponse({"success": True})


class PaymentProofForm(forms.Form):
    file = forms.ImageField()


@require_POST
@api_login_required
def upload_payment_proof(request):
    """Store a payment screenshot and return its public URL"""
    order_id = request.GET.get("orderId")
    if not order_id:
        return JsonResponse({"success": False, "error": "Missing orderId"}, status=400)

    order = _get_user_order(request, order_id)
    if order is None:
        return JsonResponse({"success": False, "error": "Not found"}, status=404)

    if "file" not in request.FILES:
        return JsonResponse({"success": False, "error": "Missing file"}, status=400)

    form = PaymentProofForm(files=request.FILES)
    if not form.is_valid():
        return JsonResponse({"success": False, "error": "Upload a valid image"}, status=400)

    upload = form.cleaned_data["file"]
    ext = os.path.splitext(upload.name)[1].lower().lstrip(".") or "jpg"
    path = f"payment-proofs/proofs/{request.user.pk}/{order.id}-{int(time.time() * 1000)}.{ext}"

    try:
        saved_name = default_storage.save(path, upload)
    except Exception as e:
        logger.error(f"Payment proof upload failed for {order.order_number}: {str(e)}", exc_info=True)
        return JsonResponse({"success": False, "error": "Upload failed"}, status=500)

    url = request.build_absolute_uri(default_storage.url(saved_name))
    logger.info(f"Payment proof stored for {order.order_number}: {saved_name}")
    return JsonResponse({"success": True, "url": url})


@require_POST
def confirm_order(request):
    """WhatsApp confirmation for a placed order, closes the tracked cart session"""
    try:
        data = parse_json_body(request)
        order_ref = data.get("orderId")
        customer_info = data.get("customerInfo")
        order_total = data.get("orderTotal")

        if not order_ref or not isinstance(customer_info, dict) or not order_total:
            return JsonResponse({"success": False, "error": "Missing required fields"}, status=400)

        phone = customer_info.get("phoneNumber")
        if (phone and customer_info.get("whatsappConsent")
                and StoreSettings.is_enabled("whatsappEnabled")
                and StoreSettings.is_enabled("orderConfirmationEnabled")):
            WhatsAppAPI().send_order_confirmation(phone, customer_info.get("name") or "Customer", order_ref, order_total)

        if data.get("sessionId"):
            cart_tracking.mark_completed(str(data["sessionId"]))

        return JsonResponse({"success": True})

    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)
    except Exception as e:
        logger.error(f"Order confirmation error: {str(e)}", exc_info=True)
        return JsonResponse({"success": False, "error": "Internal server error"}, status=500)


# ==================== PAYMENT GATEWAY ====================


@require_GET
def payment_config(request):
    return JsonResponse({"razorpayKeyId": settings.RAZORPAY_KEY_ID or ""})


@require_POST
@api_login_required
def create_payment_order(request):
    """Local order (GST included) plus the matching Razorpay order"""
    try:
        payload = parse_order_payload(parse_json_body(request))
        order = create_order(
            request.user,
            payload["order_number"],
            payload["shipping_address"],
            payload["items"],
            payment_method=Order.METHOD_RAZORPAY,
            include_tax=True,
        )
    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)
    except Exception as e:
        logger.error(f"Payment order error: {str(e)}", exc_info=True)
        return JsonResponse({"success": False, "error": "Internal server error"}, status=500)

    razorpay = RazorpayAPI()
    success, result = razorpay.create_order(order.total_amount, receipt=order.order_number)
    if not success:
        cancel_order(order.id, reason="Gateway order creation failed")
        return JsonResponse({"success": False, "error": "Failed to create payment order"}, status=400)

    Order.objects.filter(id=order.id).update(gateway_order_id=result["id"])

    return JsonResponse({
        "success": True,
        "orderId": str(order.id),
        "razorpayOrderId": result["id"],
        "amount": to_paise(order.total_amount),
        "currency": result.get("currency", "INR"),
        "keyId": razorpay.key_id,
    })


@require_POST
@api_login_required
def verify_payment(request):
    """Checkout callback: signature check then mark the order paid"""
    try:
        data = parse_json_body(request)
    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)

    gateway_order_id = data.get("razorpay_order_id")
    payment_id = data.get("razorpay_payment_id")
    signature = data.get("razorpay_signature")
    if not (data.get("orderId") and gateway_order_id and payment_id and signature):
        return JsonResponse({"success": False, "error": "Missing required fields"}, status=400)

    order = _get_user_order(request, data.get("orderId"))
    if order is None or order.gateway_order_id != gateway_order_id:
        return JsonResponse({"success": False, "error": "Not found"}, status=404)

    if not RazorpayAPI().verify_payment_signature(gateway_order_id, payment_id, signature):
        logger.warning(f"Razorpay signature mismatch for {order.order_number}")
        return JsonResponse({"success": False, "error": "Payment verification failed"}, status=400)

    try:
        mark_order_paid(order.id, verified_by="razorpay", gateway_payment_id=payment_id)
    except InvalidTransition as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)

    return JsonResponse({"success": True, "verified": True})


def _order_for_gateway(gateway_order_id):
    if not gateway_order_id:
        return None
    return Order.objects.filter(gateway_order_id=gateway_order_id).first()


@csrf_exempt
@require_POST
def razorpay_webhook(request):
    """Handle Razorpay webhook with signature check and idempotency"""
    signature = request.headers.get("x-razorpay-signature")
    if not signature or not settings.RAZORPAY_WEBHOOK_SECRET:
        return JsonResponse({"success": False, "error": "Missing signature or webhook secret"}, status=400)

    if not RazorpayAPI.verify_webhook_signature(request.body, signature):
        logger.warning("Invalid Razorpay webhook signature")
        return JsonResponse({"success": False, "error": "Invalid signature"}, status=400)

    event_id = request.headers.get("x-razorpay-event-id")
    cache_key = f"razorpay_event_{event_id}"
    if event_id and cache.get(cache_key):
        logger.info(f"Razorpay event {event_id} already processed")
        return JsonResponse({"status": "already processed"})

    try:
        event = json.loads(request.body)
        event_type = event.get("event")
        payload = event.get("payload", {})

        if event_type in ("payment.captured", "payment.failed"):
            payment = payload.get("payment", {}).get("entity", {})
            order = _order_for_gateway(payment.get("order_id"))
            if order is None:
                logger.warning(f"No order for Razorpay payment {payment.get('id')}")
            elif event_type == "payment.captured":
                mark_order_paid(order.id, verified_by="razorpay", gateway_payment_id=payment.get("id", ""))
            else:
                record_payment_failure(order.id, payment.get("id", ""), payment.get("error_description") or "")
        elif event_type == "order.paid":
            gateway_order = payload.get("order", {}).get("entity", {})
            order = _order_for_gateway(gateway_order.get("id"))
            if order is None:
                logger.warning(f"No order for Razorpay order {gateway_order.get('id')}")
            else:
                mark_order_paid(order.id, verified_by="razorpay")
        else:
            logger.info(f"Unhandled Razorpay webhook event: {event_type}")

    except InvalidTransition as e:
        # Out-of-order delivery, state already moved on
        logger.warning(f"Razorpay webhook transition ignored: {str(e)}")
    except (json.JSONDecodeError, AttributeError):
        return JsonResponse({"success": False, "error": "Invalid payload"}, status=400)
    except Exception as e:
        logger.error(f"Razorpay webhook error: {str(e)}", exc_info=True)
        return JsonResponse({"success": False, "error": "Webhook processing failed"}, status=500)

    if event_id:
        cache.set(cache_key, True, 86400)
    return JsonResponse({"status": "ok"})


# ==================== WHATSAPP ====================

MESSAGE_TYPES = {"cart_update", "cart_abandonment", "order_confirmation", "shipping_update"}


@require_POST
@api_admin_required
def whatsapp_send_message(request):
    try:
        data = parse_json_body(request)
    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)

    to = str(data.get("to") or "").replace(" ", "")
    message = data.get("message")
    message_type = data.get("type")
    if not to or not message or not message_type:
        return JsonResponse({"success": False, "error": "Missing required fields"}, status=400)
    if not validate_whatsapp_number(to):
        return JsonResponse({"success": False, "error": "Invalid WhatsApp number format"}, status=400)
    if message_type not in MESSAGE_TYPES:
        return JsonResponse({"success": False, "error": "Invalid message type"}, status=400)

    whatsapp = WhatsAppAPI()
    if not whatsapp.is_configured:
        logger.error("WhatsApp credentials not configured")
        return JsonResponse({"success": False, "error": "WhatsApp service not configured"}, status=500)

    success, result = whatsapp.send_text(to, str(message))
    if not success:
        return JsonResponse({"success": False, "error": "Failed to send WhatsApp message", "details": result}, status=500)

    logger.info(f"WhatsApp {message_type} message {result} sent to {to} (order {data.get('orderId')})")
    return JsonResponse({"success": True, "messageId": result, "message": "WhatsApp message sent successfully"})


def _last_ten_digits(phone):
    return re.sub(r"\D", "", phone or "")[-10:]


def _reply_order_status(whatsapp, sender):
    digits = _last_ten_digits(sender)
    order = None
    if digits:
        order = Order.objects.filter(
            Q(user__profile__phone__endswith=digits) | Q(shipping_address__phone__endswith=digits)
        ).order_by("-created_at").first()

    if order is None:
        body = f"We couldn't find an order for this number. Reply HELP to reach {settings.STORE_NAME} support."
    else:
        body = (
            f"Order #{order.order_number}\n"
            f"Status: {order.get_status_display()}\n"
            f"Payment: {order.get_payment_status_display()}\n\n"
            f"Details: {settings.SITE_URL}/account"
        )
    whatsapp.send_text(sender, body)


def _reply_cart(whatsapp, sender):
    whatsapp.send_text(sender, f"🛍️ Your cart is waiting: {settings.SITE_URL}/cart")


def _reply_support(whatsapp, sender):
    whatsapp.send_text(
        sender,
        f"Need help? Call {settings.SUPPORT_PHONE} or email {settings.SUPPORT_EMAIL}. "
        f"Reply ORDER STATUS to check your latest order.",
    )


def _handle_opt_out(whatsapp, sender):
    digits = _last_ten_digits(sender)
    updated = Profile.objects.filter(phone__endswith=digits).update(whatsapp_opt_in=False) if digits else 0
    logger.info(f"WhatsApp opt-out from {sender}: {updated} profiles updated")
    whatsapp.send_text(sender, "You have been unsubscribed from WhatsApp updates.")


def handle_incoming_message(sender, body):
    """Route an incoming WhatsApp message by keyword"""
    text = (body or "").lower()
    whatsapp = WhatsAppAPI()

    if "order status" in text or "track order" in text:
        _reply_order_status(whatsapp, sender)
        return "order_status"
    if "cart" in text or "checkout" in text:
        _reply_cart(whatsapp, sender)
        return "cart"
    if "help" in text or "support" in text:
        _reply_support(whatsapp, sender)
        return "support"
    if "stop" in text or "unsubscribe" in text:
        _handle_opt_out(whatsapp, sender)
        return "opt_out"
    return None


@csrf_exempt
@require_http_methods(["GET", "POST"])
def whatsapp_webhook(request):
    if request.method == "GET":
        mode = request.GET.get("hub.mode")
        token = request.GET.get("hub.verify_token")
        challenge = request.GET.get("hub.challenge", "")
        verify_token = settings.WHATSAPP_WEBHOOK_VERIFY_TOKEN

        if mode == "subscribe" and verify_token and token == verify_token:
            logger.info("WhatsApp webhook verified")
            return HttpResponse(challenge)
        return HttpResponse("Forbidden", status=403)

    try:
        data = json.loads(request.body)
        entry = (data.get("entry") or [{}])[0]
        change = (entry.get("changes") or [{}])[0]
        value = change.get("value") or {}

        if change.get("field") == "messages" and value.get("messages"):
            message = value["messages"][0]
            sender = message.get("from", "")
            body = (message.get("text") or {}).get("body", "")
            logger.info(f"WhatsApp message received from {sender}")
            handle_incoming_message(sender, body)

        return JsonResponse({"status": "ok"})

    except Exception as e:
        logger.error(f"WhatsApp webhook error: {str(e)}", exc_info=True)
        return JsonResponse({"success": False, "error": "Internal server error"}, status=500)


# ==================== CRON ====================


@csrf_exempt
@require_POST
def cron_auto_cancel_pending(request):
    auth_header = request.headers.get("Authorization", "")
    token = re.sub(r"^Bearer\s+", "", auth_header, flags=re.IGNORECASE)
    if not settings.CRON_SECRET or not hmac.compare_digest(token.encode("utf-8"), settings.CRON_SECRET.encode("utf-8")):
        return JsonResponse({"success": False, "error": "Unauthorized"}, status=401)

    try:
        cancelled = auto_cancel_pending_orders()
        return JsonResponse({"success": True, "cancelled": cancelled})
    except Exception as e:
        logger.error(f"Auto-cancel error: {str(e)}", exc_info=True)
        return JsonResponse({"success": False, "error": "Internal error"}, status=500)
