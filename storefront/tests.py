import os
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings

from catalog.models import Product

User = get_user_model()
PASSWORD = "Saree@Secure2024"


class AdminRoleMiddlewareTests(TestCase):
    def test_anonymous_redirected_to_login(self):
        response = self.client.get("/admin/")
        self.assertEqual(response.status_code, 302)
        self.assertEqual(response["Location"], "/admin/login/?next=%2Fadmin%2F")

    def test_customer_redirected_with_error(self):
        customer = User.objects.create_user(username="priya@example.com", email="priya@example.com", password=PASSWORD)
        self.client.force_login(customer)
        response = self.client.get("/admin/")
        self.assertEqual(response.status_code, 302)
        self.assertEqual(response["Location"], "/admin/login/?error=unauthorized")

    def test_admin_gets_security_headers(self):
        owner = User.objects.create_superuser(username="owner", email="owner@example.com", password=PASSWORD)
        self.client.force_login(owner)
        response = self.client.get("/admin/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["X-Frame-Options"], "DENY")
        self.assertIn("no-store", response["Cache-Control"])

    def test_login_page_is_open(self):
        self.assertEqual(self.client.get("/admin/login/").status_code, 200)


@override_settings(CORS_ALLOWED_ORIGINS=["https://shop.example.com"])
class ApiCorsMiddlewareTests(TestCase):
    def test_preflight_echoes_allowed_origin(self):
        response = self.client.options("/api/products", HTTP_ORIGIN="https://shop.example.com")
        self.assertEqual(response.status_code, 204)
        self.assertEqual(response["Access-Control-Allow-Origin"], "https://shop.example.com")
        self.assertEqual(response["Access-Control-Allow-Credentials"], "true")
        self.assertIn("X-CSRFToken", response["Access-Control-Allow-Headers"])
        self.assertIn("Origin", response["Vary"])

    def test_unknown_origin_gets_no_cors_headers(self):
        response = self.client.get("/api/categories", HTTP_ORIGIN="https://evil.example.net")
        self.assertEqual(response.status_code, 200)
        self.assertNotIn("Access-Control-Allow-Origin", response)
        self.assertNotIn("Access-Control-Allow-Credentials", response)

    def test_headers_on_api_responses_only(self):
        api = self.client.get("/api/categories", HTTP_ORIGIN="https://shop.example.com")
        self.assertEqual(api["Access-Control-Allow-Origin"], "https://shop.example.com")
        admin = self.client.get("/admin/login/", HTTP_ORIGIN="https://shop.example.com")
        self.assertNotIn("Access-Control-Allow-Origin", admin)


class OperationsTests(TestCase):
    def test_connection_reports_counts(self):
        Product.objects.create(name="Chiffon Saree", price=1200, category="Casual Sarees")
        response = self.client.get("/api/test-connection")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["counts"]["products"], 1)

    def test_env_check_requires_admin(self):
        self.assertEqual(self.client.get("/api/debug/env-check").status_code, 401)

    @patch.dict(os.environ, {"UPI_ID": "elegance@upi"})
    def test_env_check_reports_presence_only(self):
        owner = User.objects.create_superuser(username="owner", email="owner@example.com", password=PASSWORD)
        self.client.force_login(owner)
        env = self.client.get("/api/debug/env-check").json()["env"]
        self.assertIs(env["UPI_ID"], True)
        self.assertNotIn("elegance@upi", str(env))
