import json
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import Client, TestCase

from catalog.models import Product
from orders.models import CartItem, StoreSettings

from .models import Address, NewsletterSubscription, Profile, Wishlist, is_admin

User = get_user_model()
PASSWORD = "Saree@Secure2024"


def post_json(client, url, data, **extra):
    return client.post(url, data=json.dumps(data), content_type="application/json", **extra)


class ProfileTests(TestCase):
    def test_profile_created_with_customer_role(self):
        user = User.objects.create_user(username="meera@example.com", email="meera@example.com", password=PASSWORD)
        self.assertEqual(user.profile.role, Profile.ROLE_CUSTOMER)
        self.assertEqual(user.profile.email, "meera@example.com")
        self.assertFalse(is_admin(user))

    def test_superuser_gets_admin_role(self):
        user = User.objects.create_superuser(username="owner", email="owner@example.com", password=PASSWORD)
        self.assertEqual(user.profile.role, Profile.ROLE_ADMIN)
        self.assertTrue(is_admin(user))


class AuthApiTests(TestCase):
    def test_register_logs_in(self):
        response = post_json(self.client, "/api/auth/register", {
            "email": "Priya@Example.com",
            "password": PASSWORD,
            "full_name": "Priya Sharma",
            "phone": "9876543210",
        })
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["user"]["full_name"], "Priya Sharma")

        me = self.client.get("/api/auth/me")
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["user"]["role"], "customer")

    def test_register_rejects_duplicate_and_bad_input(self):
        User.objects.create_user(username="priya@example.com", email="priya@example.com", password=PASSWORD)
        response = post_json(self.client, "/api/auth/register", {"email": "priya@example.com", "password": PASSWORD})
        self.assertEqual(response.status_code, 400)

        response = post_json(self.client, "/api/auth/register", {"email": "not-an-email", "password": PASSWORD})
        self.assertEqual(response.status_code, 400)

        response = post_json(self.client, "/api/auth/register", {
            "email": "new@example.com", "password": PASSWORD, "phone": "12345",
        })
        self.assertEqual(response.status_code, 400)

    def test_login_with_wrong_password(self):
        User.objects.create_user(username="priya@example.com", email="priya@example.com", password=PASSWORD)
        response = post_json(self.client, "/api/auth/login", {"email": "priya@example.com", "password": "wrong"})
        self.assertEqual(response.status_code, 401)

    def test_me_requires_login(self):
        self.assertEqual(self.client.get("/api/auth/me").status_code, 401)

    def test_logout(self):
        user = User.objects.create_user(username="priya@example.com", email="priya@example.com", password=PASSWORD)
        self.client.force_login(user)
        self.assertEqual(self.client.post("/api/auth/logout").status_code, 200)
        self.assertEqual(self.client.get("/api/auth/me").status_code, 401)


class GuestCartMergeTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="priya@example.com", email="priya@example.com", password=PASSWORD)
        self.saree_a = Product.objects.create(name="Chanderi Saree", price=Decimal("1500"), category="Cotton Sarees")
        self.saree_b = Product.objects.create(name="Patola Saree", price=Decimal("8000"), category="Silk Sarees")

    def test_guest_cart_is_merged_on_login(self):
        CartItem.objects.create(user=self.user, product=self.saree_a, quantity=2)
        CartItem.objects.create(user=self.user, product=self.saree_b, quantity=1)

        post_json(self.client, "/api/cart/add", {"productId": str(self.saree_a.id), "quantity": 1})
        response = post_json(self.client, "/api/auth/login", {"email": "priya@example.com", "password": PASSWORD})
        self.assertEqual(response.status_code, 200)

        quantities = dict(CartItem.objects.filter(user=self.user).values_list("product_id", "quantity"))
        self.assertEqual(quantities, {self.saree_a.id: 3, self.saree_b.id: 1})

        cart = self.client.get("/api/cart").json()
        self.assertEqual(cart["item_count"], 4)
        self.assertEqual(cart["total"], 12500.0)

    def test_login_without_guest_cart_keeps_server_cart(self):
        CartItem.objects.create(user=self.user, product=self.saree_b, quantity=1)
        post_json(self.client, "/api/auth/login", {"email": "priya@example.com", "password": PASSWORD})
        self.assertEqual(CartItem.objects.get(user=self.user).quantity, 1)


class WishlistApiTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="priya@example.com", email="priya@example.com", password=PASSWORD)
        self.product = Product.objects.create(name="Paithani Saree", price=Decimal("12000"), category="Bridal Sarees")

    def test_anonymous_is_rejected(self):
        self.assertEqual(self.client.get("/api/wishlist").status_code, 401)

    def test_add_is_idempotent(self):
        self.client.force_login(self.user)
        for _ in range(2):
            response = post_json(self.client, "/api/wishlist", {"productId": str(self.product.id)})
            self.assertEqual(response.status_code, 200)
        self.assertEqual(Wishlist.objects.filter(user=self.user).count(), 1)

        items = self.client.get("/api/wishlist").json()["items"]
        self.assertEqual(items[0]["name"], "Paithani Saree")
        self.assertTrue(items[0]["inStock"])

    def test_invalid_product_id(self):
        self.client.force_login(self.user)
        response = post_json(self.client, "/api/wishlist", {"productId": "not-a-uuid"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Invalid productId")

    def test_remove(self):
        self.client.force_login(self.user)
        Wishlist.objects.create(user=self.user, product=self.product)
        response = self.client.delete(f"/api/wishlist?productId={self.product.id}")
        self.assertEqual(response.status_code, 200)
        self.assertFalse(Wishlist.objects.filter(user=self.user).exists())


class AddressApiTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="priya@example.com", email="priya@example.com", password=PASSWORD)
        self.client.force_login(self.user)
        self.payload = {
            "full_name": "Priya Sharma",
            "phone": "9876543210",
            "address_line1": "12 MG Road",
            "city": "Bengaluru",
            "state": "Karnataka",
            "pincode": "560001",
        }

    def test_first_address_becomes_default(self):
        response = post_json(self.client, "/api/addresses", self.payload)
        self.assertEqual(response.status_code, 201)
        self.assertTrue(response.json()["address"]["is_default"])

        second = post_json(self.client, "/api/addresses", {**self.payload, "name": "Office"})
        self.assertFalse(second.json()["address"]["is_default"])

    def test_new_default_replaces_old(self):
        post_json(self.client, "/api/addresses", self.payload)
        post_json(self.client, "/api/addresses", {**self.payload, "name": "Office", "is_default": True})
        defaults = Address.objects.filter(user=self.user, is_default=True)
        self.assertEqual(list(defaults.values_list("name", flat=True)), ["Office"])

    def test_validation(self):
        response = post_json(self.client, "/api/addresses", {**self.payload, "pincode": "5600"})
        self.assertEqual(response.status_code, 400)
        response = post_json(self.client, "/api/addresses", {**self.payload, "city": ""})
        self.assertEqual(response.json()["error"], "city is required")

    def test_delete_other_users_address_is_404(self):
        other = User.objects.create_user(username="other@example.com", email="other@example.com", password=PASSWORD)
        address = Address.objects.create(user=other, **self.payload)
        self.assertEqual(self.client.delete(f"/api/addresses/{address.id}").status_code, 404)
        self.assertTrue(Address.objects.filter(id=address.id).exists())


class NewsletterApiTests(TestCase):
    def test_subscribe_twice_keeps_one_row(self):
        for _ in range(2):
            response = post_json(self.client, "/api/newsletter/subscribe", {"email": "fan@example.com"})
            self.assertEqual(response.status_code, 200)
            self.assertTrue(response.json()["success"])
        self.assertEqual(NewsletterSubscription.objects.count(), 1)

    def test_invalid_email(self):
        response = post_json(self.client, "/api/newsletter/subscribe", {"email": "nope"})
        self.assertEqual(response.status_code, 400)


class CsrfFlowTests(TestCase):
    def setUp(self):
        self.client = Client(enforce_csrf_checks=True)
        User.objects.create_user(username="priya@example.com", email="priya@example.com", password=PASSWORD)
        self.saree = Product.objects.create(name="Kota Doria Saree", price=Decimal("650"), category="Cotton Sarees")

    def csrf_token(self):
        return self.client.cookies["csrftoken"].value

    def test_token_endpoint_sets_cookie(self):
        response = self.client.get("/api/auth/csrf")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["csrfToken"])
        self.assertIn("csrftoken", self.client.cookies)

    def test_login_then_order_with_token_header(self):
        credentials = {"email": "priya@example.com", "password": PASSWORD}
        self.assertEqual(post_json(self.client, "/api/auth/login", credentials).status_code, 403)

        self.client.get("/api/auth/csrf")
        response = post_json(self.client, "/api/auth/login", credentials, HTTP_X_CSRFTOKEN=self.csrf_token())
        self.assertEqual(response.status_code, 200)

        order = {
            "orderNumber": "ORD-3001",
            "amount": 1300,
            "shippingAddress": {
                "full_name": "Priya Sharma",
                "phone": "9876543210",
                "address_line1": "12 MG Road",
                "city": "Bengaluru",
                "state": "Karnataka",
                "pincode": "560001",
            },
            "items": [{"product_id": str(self.saree.id), "quantity": 2}],
        }
        # login rotates the token, so read the cookie again
        response = post_json(self.client, "/api/orders/create-upi", order, HTTP_X_CSRFTOKEN=self.csrf_token())
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["success"])


class WelcomeMessageTests(TestCase):
    def register(self, **overrides):
        data = {"email": "priya@example.com", "password": PASSWORD, "full_name": "Priya Sharma", "phone": "9876543210"}
        data.update(overrides)
        return post_json(self.client, "/api/auth/register", data)

    @patch("accounts.views.WhatsAppAPI")
    def test_welcome_sent_on_register(self, whatsapp):
        whatsapp.return_value.send_welcome_message.return_value = (True, "wamid.1")
        self.assertEqual(self.register().status_code, 201)
        whatsapp.return_value.send_welcome_message.assert_called_once_with("9876543210", "Priya Sharma")

    @patch("accounts.views.WhatsAppAPI")
    def test_no_welcome_without_phone(self, whatsapp):
        self.assertEqual(self.register(phone="").status_code, 201)
        whatsapp.return_value.send_welcome_message.assert_not_called()

    @patch("accounts.views.WhatsAppAPI")
    def test_no_welcome_when_whatsapp_disabled(self, whatsapp):
        StoreSettings.objects.create(settings_data={"whatsappEnabled": False})
        self.assertEqual(self.register().status_code, 201)
        whatsapp.return_value.send_welcome_message.assert_not_called()

    @patch("accounts.views.WhatsAppAPI")
    def test_welcome_failure_does_not_block_register(self, whatsapp):
        whatsapp.return_value.send_welcome_message.side_effect = RuntimeError("graph down")
        self.assertEqual(self.register().status_code, 201)
        self.assertTrue(User.objects.filter(username="priya@example.com").exists())
