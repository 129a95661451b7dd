from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from .models import PLACEHOLDER_IMAGE, Product


def make_product(**kwargs):
    defaults = {
        "name": "Kanjivaram Silk Saree",
        "price": Decimal("4999.00"),
        "category": "Silk Sarees",
        "fabric": "Silk",
        "color": "Red",
    }
    defaults.update(kwargs)
    return Product.objects.create(**defaults)


class ProductModelTests(TestCase):
    def test_slug_is_generated_and_deduplicated(self):
        first = make_product(name="Banarasi Saree!")
        second = make_product(name="Banarasi Saree")
        self.assertEqual(first.slug, "banarasi-saree")
        self.assertEqual(second.slug, "banarasi-saree-1")

    def test_image_url_falls_back_to_placeholder(self):
        product = make_product()
        self.assertEqual(product.image_url, PLACEHOLDER_IMAGE)
        product.images = ["https://cdn.example.com/a.jpg", "https://cdn.example.com/b.jpg"]
        self.assertEqual(product.image_url, "https://cdn.example.com/a.jpg")

    def test_sale_and_discount(self):
        product = make_product(price=Decimal("750"), original_price=Decimal("1000"))
        self.assertTrue(product.on_sale)
        self.assertEqual(product.discount_percent, 25)

        full_price = make_product(name="Plain", price=Decimal("750"))
        self.assertFalse(full_price.on_sale)
        self.assertEqual(full_price.discount_percent, 0)

    def test_untracked_stock_counts_as_in_stock(self):
        self.assertTrue(make_product(stock_quantity=None).in_stock)
        self.assertFalse(make_product(name="Sold out", stock_quantity=0).in_stock)


class ProductApiTests(TestCase):
    def setUp(self):
        self.silk = make_product(name="Mysore Silk", featured=True, color="Gold")
        self.cotton = make_product(
            name="Handloom Cotton", category="Cotton Sarees", fabric="Cotton",
            color="Blue", price=Decimal("899"), original_price=Decimal("1299"),
        )
        self.hidden = make_product(name="Retired Saree", active=False)

    def test_list_only_returns_active_products(self):
        response = self.client.get("/api/products")
        self.assertEqual(response.status_code, 200)
        names = [p["name"] for p in response.json()["products"]]
        self.assertIn("Mysore Silk", names)
        self.assertNotIn("Retired Saree", names)
        self.assertEqual(response.json()["total"], 2)

    def test_category_filter_is_case_insensitive_contains(self):
        response = self.client.get("/api/products", {"category": "silk"})
        names = [p["name"] for p in response.json()["products"]]
        self.assertEqual(names, ["Mysore Silk"])

    def test_price_color_and_sale_filters(self):
        response = self.client.get("/api/products", {"max_price": "1000"})
        self.assertEqual([p["name"] for p in response.json()["products"]], ["Handloom Cotton"])

        response = self.client.get("/api/products", {"color": "gold,green"})
        self.assertEqual([p["name"] for p in response.json()["products"]], ["Mysore Silk"])

        response = self.client.get("/api/products", {"sale": "1"})
        self.assertEqual([p["name"] for p in response.json()["products"]], ["Handloom Cotton"])

    def test_non_numeric_price_bounds_are_ignored(self):
        for bound in ("NaN", "Infinity", "-inf", "abc"):
            response = self.client.get("/api/products", {"min_price": bound, "max_price": bound})
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json()["total"], 2)

    def test_new_arrivals_filter(self):
        Product.objects.filter(id=self.cotton.id).update(created_at=timezone.now() - timedelta(days=45))
        response = self.client.get("/api/products", {"new": "1"})
        self.assertEqual([p["name"] for p in response.json()["products"]], ["Mysore Silk"])

    def test_sort_by_price(self):
        response = self.client.get("/api/products", {"sort": "price_asc"})
        prices = [p["price"] for p in response.json()["products"]]
        self.assertEqual(prices, sorted(prices))

    def test_pagination_past_last_page(self):
        response = self.client.get("/api/products", {"page": "5"})
        self.assertEqual(response.json()["products"], [])
        self.assertFalse(response.json()["has_next"])

    def test_detail_by_slug_and_uuid(self):
        by_slug = self.client.get(f"/api/products/{self.silk.slug}")
        by_id = self.client.get(f"/api/products/{self.silk.id}")
        self.assertEqual(by_slug.status_code, 200)
        self.assertEqual(by_id.json()["product"]["id"], str(self.silk.id))

    def test_inactive_product_detail_is_404(self):
        response = self.client.get(f"/api/products/{self.hidden.id}")
        self.assertEqual(response.status_code, 404)

    def test_category_counts(self):
        response = self.client.get("/api/categories")
        counts = {row["name"]: row["count"] for row in response.json()["categories"]}
        self.assertEqual(counts, {"Cotton Sarees": 1, "Silk Sarees": 1})
