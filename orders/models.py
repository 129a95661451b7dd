# orders/models.py
import uuid

from django.conf import settings
from django.db import models


class Order(models.Model):
    STATUS_PENDING = "pending"
    STATUS_CONFIRMED = "confirmed"
    STATUS_PROCESSING = "processing"
    STATUS_SHIPPED = "shipped"
    STATUS_DELIVERED = "delivered"
    STATUS_COMPLETED = "completed"
    STATUS_CANCELLED = "cancelled"
    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_CONFIRMED, "Confirmed"),
        (STATUS_PROCESSING, "Processing"),
        (STATUS_SHIPPED, "Shipped"),
        (STATUS_DELIVERED, "Delivered"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_CANCELLED, "Cancelled"),
    ]

    PAYMENT_PENDING = "pending"
    PAYMENT_VERIFIED = "verified"
    PAYMENT_FAILED = "failed"
    PAYMENT_STATUS_CHOICES = [
        (PAYMENT_PENDING, "Pending"),
        (PAYMENT_VERIFIED, "Verified"),
        (PAYMENT_FAILED, "Failed"),
    ]

    METHOD_UPI_QR = "UPI_QR"
    METHOD_RAZORPAY = "RAZORPAY"
    METHOD_COD = "COD"
    PAYMENT_METHOD_CHOICES = [
        (METHOD_UPI_QR, "UPI QR"),
        (METHOD_RAZORPAY, "Razorpay"),
        (METHOD_COD, "Cash on Delivery"),
    ]

    # Allowed forward moves; cancelled, completed are terminal
    TRANSITIONS = {
        STATUS_PENDING: {STATUS_CONFIRMED, STATUS_CANCELLED},
        STATUS_CONFIRMED: {STATUS_PROCESSING, STATUS_SHIPPED, STATUS_CANCELLED},
        STATUS_PROCESSING: {STATUS_SHIPPED},
        STATUS_SHIPPED: {STATUS_DELIVERED, STATUS_COMPLETED},
        STATUS_DELIVERED: {STATUS_COMPLETED},
        STATUS_COMPLETED: set(),
        STATUS_CANCELLED: set(),
    }

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, related_name="orders", on_delete=models.PROTECT)
    order_number = models.CharField(max_length=64, unique=True)

    # Status
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    payment_status = models.CharField(
        max_length=20, choices=PAYMENT_STATUS_CHOICES, default=PAYMENT_PENDING, db_index=True
    )
    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHOD_CHOICES, default=METHOD_UPI_QR)

    # Pricing
    subtotal = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    shipping_fee = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    tax = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    discount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    total_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)

    shipping_address = models.JSONField(default=dict, blank=True)

    # Payment proof / gateway references
    upi_transaction_id = models.CharField(max_length=100, blank=True, default="")
    payment_screenshot_url = models.CharField(max_length=500, blank=True, default="")
    gateway_order_id = models.CharField(max_length=100, blank=True, null=True, unique=True)
    gateway_payment_id = models.CharField(max_length=100, blank=True, default="")
    verified_by = models.CharField(max_length=150, blank=True, default="")
    verified_at = models.DateTimeField(blank=True, null=True)

    # Idempotency flags
    confirmation_sent = models.BooleanField(default=False)
    payment_email_sent = models.BooleanField(default=False)

    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["payment_status", "created_at"], name="orders_pay_status_created_idx"),
            models.Index(fields=["user", "created_at"], name="orders_user_created_idx"),
        ]

    @property
    def customer_phone(self):
        address = self.shipping_address or {}
        return str(address.get("phone") or address.get("phoneNumber") or "").strip()

    @property
    def customer_name(self):
        address = self.shipping_address or {}
        return str(address.get("full_name") or address.get("fullName") or address.get("name") or "").strip()

    @property
    def customer_email(self):
        address = self.shipping_address or {}
        return str(address.get("email") or "").strip() or getattr(self.user, "email", "")

    def can_transition_to(self, new_status):
        return new_status in self.TRANSITIONS.get(self.status, set())

    def to_dict(self, include_items=False):
        data = {
            "id": str(self.id),
            "order_number": self.order_number,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "subtotal": float(self.subtotal),
            "shipping_fee": float(self.shipping_fee),
            "tax": float(self.tax),
            "discount": float(self.discount),
            "total_amount": float(self.total_amount),
            "shipping_address": self.shipping_address,
            "upi_transaction_id": self.upi_transaction_id,
            "payment_screenshot_url": self.payment_screenshot_url,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items.all()]
        return data

    def __str__(self):
        return f"Order #{self.order_number} ({self.status}/{self.payment_status})"


class OrderItem(models.Model):
    order = models.ForeignKey(Order, related_name="items", on_delete=models.CASCADE)
    product = models.ForeignKey("catalog.Product", related_name="order_items", on_delete=models.PROTECT)
    product_name = models.CharField(max_length=200)
    quantity = models.PositiveIntegerField(default=1)
    # catalog price at order time
    price = models.DecimalField(max_digits=10, decimal_places=2)

    @property
    def line_total(self):
        return self.price * self.quantity

    def to_dict(self):
        return {
            "product_id": str(self.product_id),
            "product_name": self.product_name,
            "quantity": self.quantity,
            "price": float(self.price),
        }

    def __str__(self):
        return f"{self.product_name} x {self.quantity}"


class CartItem(models.Model):
    """Server mirror of a signed-in customer's cart"""

    user = models.ForeignKey(settings.AUTH_USER_MODEL, related_name="cart_items", on_delete=models.CASCADE)
    product = models.ForeignKey("catalog.Product", related_name="cart_items", on_delete=models.CASCADE)
    quantity = models.PositiveIntegerField(default=1)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["user", "product"], name="unique_cart_product"),
        ]

    def __str__(self):
        return f"{self.user_id}: {self.product_id} x {self.quantity}"


def default_store_settings():
    return {
        "storeName": settings.STORE_NAME,
        "storeEmail": settings.SUPPORT_EMAIL,
        "storePhone": settings.SUPPORT_PHONE,
        "currency": settings.CURRENCY,
        "taxRate": str(settings.TAX_RATE),
        "shippingFee": str(settings.SHIPPING_FEE),
        "freeShippingThreshold": str(settings.FREE_SHIPPING_THRESHOLD),
        "upiId": settings.UPI_ID,
        "whatsappEnabled": True,
        "emailNotifications": True,
        "smsNotifications": False,
        "cartAbandonmentEnabled": True,
        "orderConfirmationEnabled": True,
        "shippingUpdatesEnabled": True,
    }


class StoreSettings(models.Model):
    """Singleton row of admin-editable settings, merged over the env defaults"""

    MAIN_ID = "main"

    id = models.CharField(primary_key=True, max_length=20, default=MAIN_ID)
    settings_data = models.JSONField(default=dict, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Store settings"
        verbose_name_plural = "Store settings"

    @classmethod
    def current(cls):
        row = cls.objects.filter(id=cls.MAIN_ID).first()
        merged = default_store_settings()
        if row and isinstance(row.settings_data, dict):
            merged.update(row.settings_data)
        return merged

    @classmethod
    def is_enabled(cls, key):
        value = cls.current().get(key, False)
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)

    def __str__(self):
        return f"Store settings ({self.id})"
