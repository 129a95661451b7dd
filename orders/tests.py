import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

from django.contrib.auth import get_user_model
from django.core import mail
from django.core.cache import cache
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import TestCase, override_settings
from django.utils import timezone

from accounts.models import Profile
from catalog.models import Product

from . import cart_tracking
from .analytics import build_analytics
from .cart_utils import add_item, calculate_order_totals, cart_summary, merge_carts, remove_item, update_quantity
from .models import CartItem, Order, StoreSettings
from .order_utils import InvalidTransition, auto_cancel_pending_orders, cancel_order, create_order, mark_order_paid
from .razorpay_utils import RazorpayAPI, to_paise
from .upi_utils import build_upi_intent, build_upi_link
from .validators import PayloadError, parse_order_payload, parse_quantity, validate_phone_number
from .views import handle_incoming_message
from .whatsapp_utils import WhatsAppAPI

User = get_user_model()
PASSWORD = "Saree@Secure2024"

SHIPPING_ADDRESS = {
    "full_name": "Priya Sharma",
    "phone": "9876543210",
    "address_line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
}

PRICING = {
    "free_shipping_threshold": Decimal("999"),
    "shipping_fee": Decimal("99"),
    "tax_rate": Decimal("18"),
}


def post_json(client, url, data, **extra):
    return client.post(url, data=json.dumps(data), content_type="application/json", **extra)


def make_customer(email="priya@example.com", phone="9876543210"):
    user = User.objects.create_user(username=email, email=email, password=PASSWORD)
    Profile.objects.filter(user=user).update(phone=phone, full_name="Priya Sharma")
    return user


def make_admin():
    return User.objects.create_superuser(username="owner", email="owner@example.com", password=PASSWORD)


class OrderTestMixin:
    def setUp(self):
        cache.clear()
        self.customer = make_customer()
        self.saree = Product.objects.create(name="Kota Doria Saree", price=Decimal("650"), category="Cotton Sarees")

    def place_order(self, number="ORD-1001", quantity=2, **kwargs):
        items = [{"product_id": self.saree.id, "quantity": quantity}]
        return create_order(self.customer, number, dict(SHIPPING_ADDRESS), items, **kwargs)


# ==================== CART ====================


class CartLineTests(TestCase):
    def setUp(self):
        self.a = {"id": "a", "name": "Silk", "price": 1000, "image": ""}
        self.b = {"id": "b", "name": "Cotton", "price": 250.5, "image": ""}

    def test_add_increments_existing_line(self):
        cart = add_item([], self.a, 1)
        cart = add_item(cart, self.a, 2)
        cart = add_item(cart, self.b, 1)
        self.assertEqual([(line["id"], line["quantity"]) for line in cart], [("a", 3), ("b", 1)])

    def test_summary_total_matches_lines(self):
        cart = add_item(add_item([], self.a, 2), self.b, 2)
        summary = cart_summary(cart)
        self.assertEqual(summary["total"], 2501.0)
        self.assertEqual(summary["item_count"], 4)

    def test_zero_quantity_removes_line(self):
        cart = add_item(add_item([], self.a, 1), self.b, 1)
        self.assertEqual([line["id"] for line in update_quantity(cart, "a", 0)], ["b"])
        self.assertEqual([line["id"] for line in remove_item(cart, "b")], ["a"])

    def test_helpers_do_not_mutate_input(self):
        cart = add_item([], self.a, 1)
        update_quantity(cart, "a", 5)
        self.assertEqual(cart[0]["quantity"], 1)

    def test_merge_sums_shared_products(self):
        guest = [dict(self.a, quantity=1)]
        user = [dict(self.a, quantity=2), dict(self.b, quantity=1)]
        merged = merge_carts(user, guest)
        self.assertEqual({line["id"]: line["quantity"] for line in merged}, {"a": 3, "b": 1})


class CartApiTests(TestCase):
    def setUp(self):
        self.saree = Product.objects.create(name="Tussar Silk Saree", price=Decimal("2400"), category="Silk Sarees")

    def test_guest_cart_flow(self):
        response = post_json(self.client, "/api/cart/add", {"productId": str(self.saree.id), "quantity": 2})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["total"], 4800.0)

        response = post_json(self.client, "/api/cart/update", {"productId": str(self.saree.id), "quantity": 1})
        self.assertEqual(response.json()["item_count"], 1)

        response = post_json(self.client, "/api/cart/remove", {"productId": str(self.saree.id)})
        self.assertEqual(response.json()["items"], [])

    def test_update_missing_item_is_404(self):
        response = post_json(self.client, "/api/cart/update", {"productId": str(self.saree.id), "quantity": 1})
        self.assertEqual(response.status_code, 404)

    def test_inactive_product_cannot_be_added(self):
        self.saree.active = False
        self.saree.save()
        response = post_json(self.client, "/api/cart/add", {"productId": str(self.saree.id)})
        self.assertEqual(response.status_code, 404)

    def test_invalid_quantity(self):
        response = post_json(self.client, "/api/cart/add", {"productId": str(self.saree.id), "quantity": -1})
        self.assertEqual(response.status_code, 400)

    def test_signed_in_cart_is_mirrored(self):
        user = make_customer()
        self.client.force_login(user)
        post_json(self.client, "/api/cart/add", {"productId": str(self.saree.id), "quantity": 3})
        self.assertEqual(CartItem.objects.get(user=user).quantity, 3)

        post_json(self.client, "/api/cart/clear", {})
        self.assertFalse(CartItem.objects.filter(user=user).exists())

    def test_replace_stored_cart(self):
        user = make_customer()
        self.client.force_login(user)
        response = post_json(self.client, "/api/cart", {"items": [{"id": str(self.saree.id), "quantity": 2}]})
        self.assertEqual(response.json()["count"], 1)
        self.assertEqual(self.client.get("/api/cart").json()["item_count"], 2)

    def test_replace_stored_cart_requires_login(self):
        response = post_json(self.client, "/api/cart", {"items": []})
        self.assertEqual(response.status_code, 401)


# ==================== PRICING & VALIDATION ====================


class OrderTotalsTests(TestCase):
    def test_free_shipping_above_threshold(self):
        totals = calculate_order_totals([{"price": Decimal("650"), "quantity": 2}], config=PRICING)
        self.assertEqual(totals["subtotal"], Decimal("1300"))
        self.assertEqual(totals["shipping"], Decimal("0"))
        self.assertEqual(totals["total"], Decimal("1300"))

    def test_shipping_fee_below_threshold(self):
        totals = calculate_order_totals([{"price": Decimal("500"), "quantity": 1}], config=PRICING)
        self.assertEqual(totals["total"], Decimal("599"))

    def test_tax_is_rounded_to_whole_rupees(self):
        totals = calculate_order_totals([{"price": Decimal("999.50"), "quantity": 1}], include_tax=True, config=PRICING)
        self.assertEqual(totals["tax"], Decimal("180"))
        self.assertEqual(totals["total"], Decimal("1179.50"))

    def test_admin_settings_override_env_defaults(self):
        StoreSettings.objects.create(settings_data={"shippingFee": "50"})
        totals = calculate_order_totals([{"price": Decimal("500"), "quantity": 1}])
        self.assertEqual(totals["shipping"], Decimal("50"))


class ValidatorTests(TestCase):
    def test_phone_numbers(self):
        self.assertTrue(validate_phone_number("9876543210"))
        self.assertTrue(validate_phone_number("+91 98765-43210"))
        self.assertFalse(validate_phone_number("1234567890"))

    def test_quantity_rejects_bools_and_fractions(self):
        self.assertEqual(parse_quantity("3"), 3)
        for bad in (True, 1.5, 0, "x", None):
            with self.assertRaises(PayloadError):
                parse_quantity(bad)

    def test_order_payload_requires_address_and_items(self):
        with self.assertRaises(PayloadError):
            parse_order_payload({"orderNumber": "ORD-1", "items": []})
        with self.assertRaises(PayloadError):
            parse_order_payload({"orderNumber": "ORD-1", "shippingAddress": SHIPPING_ADDRESS, "items": []})


class UpiLinkTests(TestCase):
    def test_link_format(self):
        link = build_upi_link(1300, "ORD-1001", payee_id="elegance@upi", merchant_name="Elegance Sarees & Co.")
        self.assertEqual(
            link,
            "upi://pay?pa=elegance%40upi&pn=Elegance%20Sarees%20%20Co&am=1300.00&cu=INR"
            "&tn=Order%20ORD-1001&tr=ORD-1001",
        )

    def test_intent_targets_google_pay(self):
        intent = build_upi_intent("upi://pay?pa=x")
        self.assertTrue(intent.startswith("intent:upi://pay?pa=x#Intent;scheme=upi;"))
        self.assertIn("package=com.google.android.apps.nbu.paisa.user", intent)


# ==================== ORDER CREATION ====================


class CreateUpiOrderTests(OrderTestMixin, TestCase):
    def payload(self, **overrides):
        data = {
            "orderNumber": "ORD-2001",
            "amount": 1,
            "shippingAddress": SHIPPING_ADDRESS,
            "items": [{"product_id": str(self.saree.id), "quantity": 2, "price": 1}],
        }
        data.update(overrides)
        return data

    def test_requires_login(self):
        response = post_json(self.client, "/api/orders/create-upi", self.payload())
        self.assertEqual(response.status_code, 401)

    def test_total_is_computed_server_side(self):
        self.client.force_login(self.customer)
        response = post_json(self.client, "/api/orders/create-upi", self.payload())
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["amount"], 1300.0)
        self.assertIn("am=1300.00", response.json()["upi"]["link"])

        order = Order.objects.get(order_number="ORD-2001")
        self.assertEqual(order.status, Order.STATUS_PENDING)
        self.assertEqual(order.payment_status, Order.PAYMENT_PENDING)
        self.assertEqual(order.items.get().price, Decimal("650"))

    def test_confirmation_email_sent_once(self):
        self.client.force_login(self.customer)
        post_json(self.client, "/api/orders/create-upi", self.payload())
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn("ORD-2001", mail.outbox[0].subject)
        self.assertTrue(Order.objects.get(order_number="ORD-2001").confirmation_sent)

    @override_settings(ADMIN_ORDER_EMAIL="orders@elegancesarees.com")
    def test_admin_notified_when_configured(self):
        self.client.force_login(self.customer)
        post_json(self.client, "/api/orders/create-upi", self.payload())
        self.assertEqual(len(mail.outbox), 2)

    def test_inactive_product_rejected(self):
        self.saree.active = False
        self.saree.save()
        self.client.force_login(self.customer)
        response = post_json(self.client, "/api/orders/create-upi", self.payload())
        self.assertEqual(response.status_code, 400)
        self.assertFalse(Order.objects.exists())

    def test_insufficient_stock_rejected(self):
        self.saree.stock_quantity = 1
        self.saree.save()
        self.client.force_login(self.customer)
        response = post_json(self.client, "/api/orders/create-upi", self.payload())
        self.assertEqual(response.status_code, 400)

    def test_duplicate_order_number_rejected(self):
        self.client.force_login(self.customer)
        post_json(self.client, "/api/orders/create-upi", self.payload())
        response = post_json(self.client, "/api/orders/create-upi", self.payload())
        self.assertEqual(response.status_code, 400)
        self.assertEqual(Order.objects.count(), 1)

    def test_missing_address(self):
        self.client.force_login(self.customer)
        response = post_json(self.client, "/api/orders/create-upi", self.payload(shippingAddress={}))
        self.assertEqual(response.status_code, 400)


class OrderAccessTests(OrderTestMixin, TestCase):
    def test_other_users_order_is_hidden(self):
        order = self.place_order()
        other = make_customer(email="other@example.com")
        self.client.force_login(other)
        response = self.client.get("/api/orders/get", {"id": str(order.id)})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(self.client.get("/api/orders").json()["orders"], [])

    def test_owner_sees_order_with_items(self):
        order = self.place_order()
        self.client.force_login(self.customer)
        data = self.client.get("/api/orders/get", {"id": str(order.id)}).json()
        self.assertEqual(data["order"]["items"][0]["quantity"], 2)

    def test_payment_proof_update(self):
        order = self.place_order()
        self.client.force_login(self.customer)
        response = post_json(self.client, "/api/orders/update-proof", {
            "id": str(order.id), "upi_transaction_id": " 412345678901 ",
        })
        self.assertEqual(response.status_code, 200)
        order.refresh_from_db()
        self.assertEqual(order.upi_transaction_id, "412345678901")

    def test_payment_proof_upload_rejects_non_images(self):
        order = self.place_order()
        self.client.force_login(self.customer)
        upload = SimpleUploadedFile("proof.txt", b"not an image", content_type="text/plain")
        response = self.client.post(f"/api/upload/payment-proof?orderId={order.id}", {"file": upload})
        self.assertEqual(response.status_code, 400)

    def test_upi_link_only_while_awaiting_payment(self):
        order = self.place_order()
        self.client.force_login(self.customer)
        self.assertEqual(self.client.get("/api/orders/upi-link", {"id": str(order.id)}).status_code, 200)
        mark_order_paid(order.id)
        self.assertEqual(self.client.get("/api/orders/upi-link", {"id": str(order.id)}).status_code, 400)


# ==================== STATE MACHINE ====================


class OrderStateTests(OrderTestMixin, TestCase):
    def test_mark_paid_is_idempotent(self):
        order = self.place_order()
        paid, changed = mark_order_paid(order.id, transaction_id="412345678901", verified_by="owner")
        self.assertTrue(changed)
        self.assertEqual(paid.status, Order.STATUS_CONFIRMED)
        self.assertEqual(paid.payment_status, Order.PAYMENT_VERIFIED)

        again, changed = mark_order_paid(order.id, verified_by="owner")
        self.assertFalse(changed)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(again.upi_transaction_id, "412345678901")

    def test_failed_payment_cannot_be_verified(self):
        order = self.place_order()
        cancel_order(order.id)
        with self.assertRaises(InvalidTransition):
            mark_order_paid(order.id)

    def test_cancel_pending_marks_payment_failed(self):
        order = cancel_order(self.place_order().id, reason="Customer request")
        self.assertEqual(order.status, Order.STATUS_CANCELLED)
        self.assertEqual(order.payment_status, Order.PAYMENT_FAILED)
        self.assertIn("Customer request", order.notes)

    def test_cancel_after_payment_keeps_payment_status(self):
        order = self.place_order()
        mark_order_paid(order.id)
        order = cancel_order(order.id)
        self.assertEqual(order.payment_status, Order.PAYMENT_VERIFIED)

    def test_shipped_order_cannot_be_cancelled(self):
        order = self.place_order()
        mark_order_paid(order.id)
        Order.objects.filter(id=order.id).update(status=Order.STATUS_SHIPPED)
        with self.assertRaises(InvalidTransition):
            cancel_order(order.id)


class AutoCancelTests(OrderTestMixin, TestCase):
    def test_only_stale_pending_orders_are_cancelled(self):
        stale = self.place_order("ORD-1")
        paid = self.place_order("ORD-2")
        fresh = self.place_order("ORD-3")
        mark_order_paid(paid.id)
        old = timezone.now() - timedelta(minutes=45)
        Order.objects.filter(id__in=[stale.id, paid.id]).update(created_at=old)

        self.assertEqual(auto_cancel_pending_orders(), 1)

        stale.refresh_from_db()
        paid.refresh_from_db()
        fresh.refresh_from_db()
        self.assertEqual(stale.status, Order.STATUS_CANCELLED)
        self.assertEqual(stale.payment_status, Order.PAYMENT_FAILED)
        self.assertEqual(paid.status, Order.STATUS_CONFIRMED)
        self.assertEqual(fresh.status, Order.STATUS_PENDING)

    def test_cron_requires_secret(self):
        self.assertEqual(self.client.post("/api/cron/auto-cancel-pending").status_code, 401)

    @override_settings(CRON_SECRET="nightly-secret")
    def test_cron_with_bearer_token(self):
        response = self.client.post("/api/cron/auto-cancel-pending", HTTP_AUTHORIZATION="Bearer wrong")
        self.assertEqual(response.status_code, 401)

        response = self.client.post("/api/cron/auto-cancel-pending", HTTP_AUTHORIZATION="Bearer nightly-secret")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["cancelled"], 0)


# ==================== RAZORPAY ====================


@override_settings(
    RAZORPAY_KEY_ID="rzp_test_key",
    RAZORPAY_KEY_SECRET="rzp_test_secret",
    RAZORPAY_WEBHOOK_SECRET="whsec_test",
)
class RazorpayTests(OrderTestMixin, TestCase):
    def sign(self, message, secret):
        return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()

    def test_to_paise(self):
        self.assertEqual(to_paise(Decimal("1534.50")), 153450)

    def test_checkout_signature(self):
        signature = self.sign(b"order_abc|pay_123", "rzp_test_secret")
        razorpay = RazorpayAPI()
        self.assertTrue(razorpay.verify_payment_signature("order_abc", "pay_123", signature))
        self.assertFalse(razorpay.verify_payment_signature("order_abc", "pay_999", signature))

    @patch("orders.razorpay_utils.requests.post")
    def test_create_payment_order_includes_gst(self, mock_post):
        mock_post.return_value = MagicMock(
            json=MagicMock(return_value={"id": "order_rzp1", "amount": 153400, "currency": "INR"})
        )
        self.client.force_login(self.customer)
        response = post_json(self.client, "/api/payments/create-order", {
            "orderNumber": "ORD-3001",
            "shippingAddress": SHIPPING_ADDRESS,
            "items": [{"product_id": str(self.saree.id), "quantity": 2}],
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["amount"], 153400)
        self.assertEqual(response.json()["razorpayOrderId"], "order_rzp1")
        self.assertEqual(mock_post.call_args.kwargs["json"]["amount"], 153400)

        order = Order.objects.get(order_number="ORD-3001")
        self.assertEqual(order.gateway_order_id, "order_rzp1")
        self.assertEqual(order.tax, Decimal("234"))

    @patch("orders.razorpay_utils.requests.post", side_effect=Exception("gateway down"))
    def test_gateway_failure_cancels_local_order(self, _):
        self.client.force_login(self.customer)
        response = post_json(self.client, "/api/payments/create-order", {
            "orderNumber": "ORD-3002",
            "shippingAddress": SHIPPING_ADDRESS,
            "items": [{"product_id": str(self.saree.id), "quantity": 1}],
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(Order.objects.get(order_number="ORD-3002").status, Order.STATUS_CANCELLED)

    def test_verify_payment(self):
        order = self.place_order(payment_method=Order.METHOD_RAZORPAY)
        Order.objects.filter(id=order.id).update(gateway_order_id="order_abc")
        self.client.force_login(self.customer)

        payload = {
            "orderId": str(order.id),
            "razorpay_order_id": "order_abc",
            "razorpay_payment_id": "pay_123",
            "razorpay_signature": "forged",
        }
        self.assertEqual(post_json(self.client, "/api/payments/verify", payload).status_code, 400)

        payload["razorpay_signature"] = self.sign(b"order_abc|pay_123", "rzp_test_secret")
        self.assertEqual(post_json(self.client, "/api/payments/verify", payload).status_code, 200)
        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_VERIFIED)
        self.assertEqual(order.gateway_payment_id, "pay_123")

    def test_webhook_captured_payment_is_processed_once(self):
        order = self.place_order(payment_method=Order.METHOD_RAZORPAY)
        Order.objects.filter(id=order.id).update(gateway_order_id="order_abc")

        body = json.dumps({
            "event": "payment.captured",
            "payload": {"payment": {"entity": {"id": "pay_123", "order_id": "order_abc"}}},
        }).encode()
        headers = {
            "HTTP_X_RAZORPAY_SIGNATURE": self.sign(body, "whsec_test"),
            "HTTP_X_RAZORPAY_EVENT_ID": "evt_1",
        }

        response = self.client.post("/api/payments/webhooks/razorpay", data=body,
                                    content_type="application/json", **headers)
        self.assertEqual(response.json(), {"status": "ok"})
        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_VERIFIED)

        response = self.client.post("/api/payments/webhooks/razorpay", data=body,
                                    content_type="application/json", **headers)
        self.assertEqual(response.json(), {"status": "already processed"})
        self.assertEqual(len(mail.outbox), 1)

    def test_webhook_rejects_bad_signature(self):
        response = self.client.post("/api/payments/webhooks/razorpay", data=b"{}",
                                    content_type="application/json", HTTP_X_RAZORPAY_SIGNATURE="bad")
        self.assertEqual(response.status_code, 400)

    def post_payment_event(self, event_type, entity, event_id):
        body = json.dumps({"event": event_type, "payload": {"payment": {"entity": entity}}}).encode()
        return self.client.post(
            "/api/payments/webhooks/razorpay", data=body, content_type="application/json",
            HTTP_X_RAZORPAY_SIGNATURE=self.sign(body, "whsec_test"), HTTP_X_RAZORPAY_EVENT_ID=event_id,
        )

    def test_failed_attempt_then_capture_confirms_order(self):
        order = self.place_order(payment_method=Order.METHOD_RAZORPAY)
        Order.objects.filter(id=order.id).update(gateway_order_id="order_abc")

        response = self.post_payment_event("payment.failed", {
            "id": "pay_1", "order_id": "order_abc", "error_description": "Card declined",
        }, "evt_f")
        self.assertEqual(response.json(), {"status": "ok"})
        order.refresh_from_db()
        self.assertEqual(order.status, Order.STATUS_PENDING)
        self.assertEqual(order.payment_status, Order.PAYMENT_PENDING)
        self.assertIn("pay_1", order.notes)
        self.assertIn("Card declined", order.notes)

        response = self.post_payment_event("payment.captured", {"id": "pay_2", "order_id": "order_abc"}, "evt_c")
        self.assertEqual(response.json(), {"status": "ok"})
        order.refresh_from_db()
        self.assertEqual(order.status, Order.STATUS_CONFIRMED)
        self.assertEqual(order.payment_status, Order.PAYMENT_VERIFIED)
        self.assertEqual(order.gateway_payment_id, "pay_2")

    def test_late_failure_leaves_paid_order_alone(self):
        order = self.place_order(payment_method=Order.METHOD_RAZORPAY)
        Order.objects.filter(id=order.id).update(gateway_order_id="order_abc")

        self.post_payment_event("payment.captured", {"id": "pay_2", "order_id": "order_abc"}, "evt_c")
        self.post_payment_event("payment.failed", {"id": "pay_1", "order_id": "order_abc"}, "evt_f")

        order.refresh_from_db()
        self.assertEqual(order.status, Order.STATUS_CONFIRMED)
        self.assertEqual(order.payment_status, Order.PAYMENT_VERIFIED)
        self.assertNotIn("pay_1", order.notes)



# ==================== WHATSAPP ====================


@override_settings(
    WHATSAPP_ACCESS_TOKEN="token",
    WHATSAPP_PHONE_NUMBER_ID="1234567890",
    WHATSAPP_WEBHOOK_VERIFY_TOKEN="verify-me",
)
class WhatsAppTests(TestCase):
    def setUp(self):
        self.customer = make_customer()
        self.admin = make_admin()

    def graph_response(self):
        return MagicMock(ok=True, content=b"{}", json=MagicMock(return_value={"messages": [{"id": "wamid.1"}]}))

    def test_phone_formatting(self):
        self.assertEqual(WhatsAppAPI.format_phone_number("98765 43210"), "919876543210")
        self.assertEqual(WhatsAppAPI.format_phone_number("+44 7700 900123"), "447700900123")

    def test_webhook_handshake(self):
        response = self.client.get("/api/whatsapp/webhook", {
            "hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "1158201444",
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b"1158201444")

        response = self.client.get("/api/whatsapp/webhook", {
            "hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "1",
        })
        self.assertEqual(response.status_code, 403)

    @override_settings(WHATSAPP_WEBHOOK_VERIFY_TOKEN="")
    def test_handshake_refused_without_configured_token(self):
        response = self.client.get("/api/whatsapp/webhook", {
            "hub.mode": "subscribe", "hub.verify_token": "", "hub.challenge": "1",
        })
        self.assertEqual(response.status_code, 403)

    @patch("orders.whatsapp_utils.requests.post")
    def test_send_message_as_admin(self, mock_post):
        mock_post.return_value = self.graph_response()
        self.client.force_login(self.admin)
        response = post_json(self.client, "/api/whatsapp/send-message", {
            "to": "+919876543210", "message": "Your saree has shipped", "type": "shipping_update",
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["messageId"], "wamid.1")
        self.assertEqual(mock_post.call_args.kwargs["json"]["to"], "919876543210")

    def test_send_message_forbidden_for_customers(self):
        self.client.force_login(self.customer)
        response = post_json(self.client, "/api/whatsapp/send-message", {
            "to": "+919876543210", "message": "hi", "type": "cart_update",
        })
        self.assertEqual(response.status_code, 403)

    def test_send_message_validates_number_and_type(self):
        self.client.force_login(self.admin)
        response = post_json(self.client, "/api/whatsapp/send-message", {
            "to": "9876543210", "message": "hi", "type": "cart_update",
        })
        self.assertEqual(response.status_code, 400)
        response = post_json(self.client, "/api/whatsapp/send-message", {
            "to": "+919876543210", "message": "hi", "type": "promo",
        })
        self.assertEqual(response.status_code, 400)

    @patch("orders.whatsapp_utils.requests.post")
    def test_stop_keyword_opts_out(self, mock_post):
        mock_post.return_value = self.graph_response()
        body = {
            "entry": [{"changes": [{
                "field": "messages",
                "value": {"messages": [{"from": "919876543210", "text": {"body": "STOP"}}]},
            }]}],
        }
        response = post_json(self.client, "/api/whatsapp/webhook", body)
        self.assertEqual(response.status_code, 200)
        self.assertFalse(Profile.objects.get(user=self.customer).whatsapp_opt_in)

    @patch("orders.whatsapp_utils.requests.post")
    def test_keyword_routing(self, mock_post):
        mock_post.return_value = self.graph_response()
        self.assertEqual(handle_incoming_message("919876543210", "Track order please"), "order_status")
        self.assertEqual(handle_incoming_message("919876543210", "checkout link?"), "cart")
        self.assertEqual(handle_incoming_message("919876543210", "need help"), "support")
        self.assertIsNone(handle_incoming_message("919876543210", "hello"))


# ==================== CART TRACKING ====================


class CartTrackingTests(TestCase):
    def setUp(self):
        cache.clear()
        self.now = timezone.now()
        self.items = [{"id": "p1", "name": "Silk Saree", "price": 2500, "quantity": 1}]
        self.user_info = {"phoneNumber": "9876543210", "name": "Priya"}

    @patch("orders.cart_tracking.WhatsAppAPI")
    def test_sweep_flags_abandoned_cart_once(self, mock_api):
        mock_api.return_value.send_cart_notification.return_value = (True, "wamid.1")
        mock_api.return_value.send_cart_abandonment_reminder.return_value = (True, "wamid.2")
        cart_tracking.track_cart_update("sess-1", self.items, self.user_info, now=self.now)

        stats = cart_tracking.sweep(now=self.now + timedelta(minutes=31))
        self.assertEqual(stats, {"abandoned": 1, "reminded": 1, "evicted": 0})
        self.assertEqual(cart_tracking.get_session("sess-1")["reminders_sent"], 1)
        self.assertEqual(len(cart_tracking.abandoned_carts()), 1)

        stats = cart_tracking.sweep(now=self.now + timedelta(minutes=62))
        self.assertEqual(stats["abandoned"], 0)
        mock_api.return_value.send_cart_abandonment_reminder.assert_called_once()

    @patch("orders.cart_tracking.WhatsAppAPI")
    def test_stale_sessions_are_evicted(self, mock_api):
        mock_api.return_value.send_cart_notification.return_value = (True, "wamid.1")
        cart_tracking.track_cart_update("sess-1", self.items, now=self.now)
        stats = cart_tracking.sweep(now=self.now + timedelta(hours=25))
        self.assertEqual(stats["evicted"], 1)
        self.assertIsNone(cart_tracking.get_session("sess-1"))

    @patch("orders.cart_tracking.WhatsAppAPI")
    def test_reminders_respect_store_toggle(self, mock_api):
        StoreSettings.objects.create(settings_data={"cartAbandonmentEnabled": False})
        cart_tracking.track_cart_update("sess-1", self.items, self.user_info, now=self.now)
        stats = cart_tracking.sweep(now=self.now + timedelta(minutes=31))
        self.assertEqual(stats["reminded"], 0)
        mock_api.return_value.send_cart_abandonment_reminder.assert_not_called()

    def test_completed_session_is_forgotten(self):
        cart_tracking.track_cart_update("sess-1", self.items, now=self.now)
        self.assertEqual(len(cart_tracking.active_sessions()), 1)
        cart_tracking.mark_completed("sess-1")
        self.assertEqual(cart_tracking.active_sessions(), [])

    def test_notify_endpoint(self):
        response = post_json(self.client, "/api/cart/notify", {"sessionId": "sess-9", "cartItems": self.items})
        self.assertEqual(response.status_code, 200)
        self.assertIsNotNone(cart_tracking.get_session("sess-9"))

        response = post_json(self.client, "/api/cart/notify", {"sessionId": "sess-9"})
        self.assertEqual(response.status_code, 400)

    def test_notify_rejects_malformed_items(self):
        bad_carts = [
            [{"id": "p1", "price": "x", "quantity": 1}],
            [{"id": "p1", "price": 2500, "quantity": "abc"}],
            [{"id": "p1", "price": "NaN", "quantity": 1}],
            ["p1"],
        ]
        for cart_items in bad_carts:
            response = post_json(self.client, "/api/cart/notify", {"sessionId": "sess-bad", "cartItems": cart_items})
            self.assertEqual(response.status_code, 400)
            self.assertFalse(response.json()["success"])
        self.assertIsNone(cart_tracking.get_session("sess-bad"))

    def test_track_rejects_negative_price(self):
        with self.assertRaises(PayloadError):
            cart_tracking.track_cart_update("sess-1", [{"id": "p1", "price": -5, "quantity": 1}])

    def test_sweep_keeps_session_tracked_mid_sweep(self):
        cart_tracking.track_cart_update("sess-old", self.items, now=self.now)
        later = self.now + timedelta(hours=25)
        read_session = cart_tracking.get_session

        def tracked_during_sweep(session_id):
            if session_id == "sess-old":
                cart_tracking.track_cart_update("sess-new", self.items, now=later)
            return read_session(session_id)

        with patch("orders.cart_tracking.get_session", side_effect=tracked_during_sweep):
            stats = cart_tracking.sweep(now=later)

        self.assertEqual(stats["evicted"], 1)
        self.assertEqual(cart_tracking._load_index(), ["sess-new"])
        self.assertEqual([s["session_id"] for s in cart_tracking.active_sessions()], ["sess-new"])

    def test_index_lock_is_released(self):
        cart_tracking.track_cart_update("sess-1", self.items, now=self.now)
        cart_tracking.mark_completed("sess-1")
        self.assertIsNone(cache.get(cart_tracking.LOCK_KEY))

    @patch.object(cart_tracking, "LOCK_WAIT_SECONDS", 0)
    def test_notify_when_index_locked(self):
        cache.add(cart_tracking.LOCK_KEY, 1, 30)
        self.addCleanup(cache.delete, cart_tracking.LOCK_KEY)
        with self.assertRaises(cart_tracking.TrackerBusy):
            cart_tracking.track_cart_update("sess-1", self.items, now=self.now)

        response = post_json(self.client, "/api/cart/notify", {"sessionId": "sess-2", "cartItems": self.items})
        self.assertEqual(response.status_code, 503)
        self.assertNotIn("sess-2", cart_tracking._load_index())



# ==================== ANALYTICS ====================


class AnalyticsTests(TestCase):
    def setUp(self):
        self.now = datetime(2026, 6, 15, 12, 0, tzinfo=dt_timezone.utc)
        silk = {"product_id": "p1", "name": "Silk Saree", "category": "Silk Sarees", "price": 500, "quantity": 2}
        cotton = {"product_id": "p2", "name": "Cotton Saree", "category": "Cotton Sarees", "price": 250, "quantity": 2}
        self.orders = [
            {"user_id": 1, "total_amount": 1000, "payment_status": "verified",
             "created_at": datetime(2026, 6, 2, tzinfo=dt_timezone.utc), "items": [silk]},
            {"user_id": 1, "total_amount": 500, "payment_status": "verified",
             "created_at": datetime(2026, 2, 10, tzinfo=dt_timezone.utc), "items": [cotton]},
            {"user_id": 2, "total_amount": 700, "payment_status": "pending",
             "created_at": datetime(2026, 6, 3, tzinfo=dt_timezone.utc), "items": []},
            {"user_id": 3, "total_amount": 200, "payment_status": "verified",
             "created_at": datetime(2025, 6, 5, tzinfo=dt_timezone.utc), "items": []},
        ]
        self.products = [
            {"id": "p1", "name": "Silk Saree", "stock_quantity": 3},
            {"id": "p2", "name": "Cotton Saree", "stock_quantity": None},
            {"id": "p3", "name": "Linen Saree", "stock_quantity": 20},
        ]
        self.customers = [{"user_id": n} for n in range(1, 7)]

    def test_headline_metrics(self):
        data = build_analytics(self.orders, self.products, self.customers, self.now)
        self.assertEqual(data["totalRevenue"], 1700.0)
        self.assertEqual(data["totalOrders"], 4)
        self.assertEqual(data["totalCustomers"], 6)
        self.assertEqual(data["revenueGrowth"], "+100.0%")
        self.assertEqual(data["retentionRate"], "33.3%")
        self.assertEqual(data["conversionRate"], "50.0%")

    def test_trend_does_not_mix_years(self):
        data = build_analytics(self.orders, self.products, self.customers, self.now)
        months = [(row["month"], row["year"]) for row in data["salesTrend"]]
        self.assertEqual(months[0], ("Jan", 2026))
        self.assertEqual(months[-1], ("Jun", 2026))
        self.assertEqual(data["salesTrend"][-1]["sales"], 1000.0)

    def test_products_and_inventory(self):
        data = build_analytics(self.orders, self.products, self.customers, self.now)
        self.assertEqual(data["topProducts"][0]["id"], "p1")
        self.assertEqual(data["categoryPerformance"][0]["name"], "Silk Sarees")
        self.assertEqual([row["status"] for row in data["inventoryAlerts"]], ["low", "good"])

    def test_empty_store(self):
        data = build_analytics([], [], [], self.now)
        self.assertEqual(data["revenueGrowth"], "+0.0%")
        self.assertEqual(len(data["salesTrend"]), 6)


# ==================== ADMIN API ====================


class AdminApiTests(OrderTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.admin = make_admin()

    def test_customer_is_forbidden(self):
        self.client.force_login(self.customer)
        self.assertEqual(self.client.get("/api/admin/orders").status_code, 403)
        self.client.logout()
        self.assertEqual(self.client.get("/api/admin/orders").status_code, 401)

    def test_mark_paid_twice_sends_one_email(self):
        order = self.place_order()
        self.client.force_login(self.admin)
        payload = {"id": str(order.id), "upi_transaction_id": "412345678901"}

        first = post_json(self.client, "/api/admin/orders/mark-paid", payload)
        second = post_json(self.client, "/api/admin/orders/mark-paid", payload)
        self.assertTrue(first.json()["changed"])
        self.assertFalse(second.json()["changed"])
        self.assertEqual(len(mail.outbox), 1)

        order.refresh_from_db()
        self.assertEqual(order.verified_by, "owner")

    def test_mark_paid_unknown_order(self):
        self.client.force_login(self.admin)
        response = post_json(self.client, "/api/admin/orders/mark-paid",
                             {"id": "00000000-0000-0000-0000-000000000000"})
        self.assertEqual(response.status_code, 404)

    def test_pending_list_excludes_cancelled(self):
        keep = self.place_order("ORD-1")
        cancel_order(self.place_order("ORD-2").id)
        self.client.force_login(self.admin)
        orders = self.client.get("/api/admin/orders/pending").json()["orders"]
        self.assertEqual([row["id"] for row in orders], [str(keep.id)])

    def test_status_updates_follow_lifecycle(self):
        order = self.place_order()
        self.client.force_login(self.admin)

        response = post_json(self.client, "/api/admin/orders/update-status", {"id": str(order.id), "status": "confirmed"})
        self.assertEqual(response.status_code, 400)

        mark_order_paid(order.id)
        response = post_json(self.client, "/api/admin/orders/update-status", {"id": str(order.id), "status": "shipped"})
        self.assertEqual(response.json()["order"]["status"], "shipped")

        response = post_json(self.client, "/api/admin/orders/update-status", {"id": str(order.id), "status": "pending"})
        self.assertEqual(response.status_code, 400)

    def test_cancel_endpoint(self):
        order = self.place_order()
        self.client.force_login(self.admin)
        response = post_json(self.client, "/api/admin/orders/cancel", {"id": str(order.id)})
        self.assertEqual(response.json()["order"]["status"], "cancelled")

    def test_settings_round_trip(self):
        self.client.force_login(self.admin)
        response = post_json(self.client, "/api/admin/settings", {"settings": {"shippingFee": "49", "whatsappEnabled": False}})
        self.assertEqual(response.status_code, 200)

        current = self.client.get("/api/admin/settings").json()["settings"]
        self.assertEqual(current["shippingFee"], "49")
        self.assertFalse(current["whatsappEnabled"])
        self.assertIn("freeShippingThreshold", current)

        response = post_json(self.client, "/api/admin/settings", {"settings": "nope"})
        self.assertEqual(response.status_code, 400)

    def test_product_crud(self):
        self.client.force_login(self.admin)
        response = post_json(self.client, "/api/admin/products", {
            "name": "Pochampally Ikat Saree", "price": "3200", "category": "Silk Sarees", "stock_quantity": 4,
        })
        self.assertEqual(response.status_code, 201)
        product_id = response.json()["product"]["id"]

        response = post_json(self.client, f"/api/admin/products/{product_id}", {"price": "2999"})
        self.assertEqual(response.json()["product"]["price"], 2999.0)

        response = self.client.delete(f"/api/admin/products/{product_id}")
        self.assertEqual(response.status_code, 200)
        self.assertFalse(Product.objects.get(id=product_id).active)

    def test_product_validation(self):
        self.client.force_login(self.admin)
        response = post_json(self.client, "/api/admin/products", {"name": "No Price", "category": "Silk Sarees"})
        self.assertEqual(response.status_code, 400)
        response = post_json(self.client, "/api/admin/products", {"name": "X", "price": "10", "category": "Shawls"})
        self.assertEqual(response.status_code, 400)
        response = post_json(self.client, "/api/admin/products", {"name": "X", "price": "-5", "category": "Silk Sarees"})
        self.assertEqual(response.status_code, 400)

    def test_product_flags_parse_strings(self):
        self.client.force_login(self.admin)
        url = f"/api/admin/products/{self.saree.id}"

        response = post_json(self.client, url, {"active": "false", "featured": "true"})
        self.assertEqual(response.status_code, 200)
        self.saree.refresh_from_db()
        self.assertFalse(self.saree.active)
        self.assertTrue(self.saree.featured)

        post_json(self.client, url, {"active": True, "featured": "0"})
        self.saree.refresh_from_db()
        self.assertTrue(self.saree.active)
        self.assertFalse(self.saree.featured)

        for bad in ("maybe", "", None, [1]):
            response = post_json(self.client, url, {"active": bad})
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.json()["error"], "Invalid active")
        self.saree.refresh_from_db()
        self.assertTrue(self.saree.active)


    def test_customers_with_spend(self):
        order = self.place_order()
        mark_order_paid(order.id)
        self.client.force_login(self.admin)
        customers = self.client.get("/api/admin/customers").json()["customers"]
        self.assertEqual(len(customers), 1)
        self.assertEqual(customers[0]["order_count"], 1)
        self.assertEqual(customers[0]["total_spent"], 1300.0)

    def test_analytics_endpoint(self):
        mark_order_paid(self.place_order().id)
        self.client.force_login(self.admin)
        data = self.client.get("/api/admin/analytics").json()
        self.assertEqual(data["totalRevenue"], 1300.0)
        self.assertEqual(data["topProducts"][0]["name"], "Kota Doria Saree")
