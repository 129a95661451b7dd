from django.contrib import admin, messages

from .models import CartItem, Order, OrderItem, StoreSettings
from .order_utils import InvalidTransition, cancel_order, mark_order_paid


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    fields = ("product", "product_name", "price", "quantity")
    readonly_fields = ("product", "product_name", "price", "quantity")
    can_delete = False  # order lines are a snapshot


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        "order_number",
        "user",
        "status",
        "payment_status",
        "payment_method",
        "total_amount",
        "upi_transaction_id",
        "created_at",
    )
    list_filter = ("status", "payment_status", "payment_method", "created_at")
    search_fields = (
        "order_number",
        "user__email",
        "upi_transaction_id",
        "gateway_order_id",
        "gateway_payment_id",
    )

    # Status fields move only through the actions below
    readonly_fields = (
        "status",
        "payment_status",
        "subtotal",
        "shipping_fee",
        "tax",
        "discount",
        "total_amount",
        "gateway_order_id",
        "gateway_payment_id",
        "verified_by",
        "verified_at",
        "confirmation_sent",
        "payment_email_sent",
        "created_at",
        "updated_at",
    )

    inlines = [OrderItemInline]
    actions = ["mark_paid", "cancel_orders"]

    fieldsets = (
        ("Order", {
            "fields": ("order_number", "user", "status", "payment_status", "payment_method")
        }),
        ("Pricing", {
            "fields": ("subtotal", "shipping_fee", "tax", "discount", "total_amount")
        }),
        ("Shipping Address", {
            "fields": ("shipping_address",)
        }),
        ("Payment Proof", {
            "fields": (
                "upi_transaction_id",
                "payment_screenshot_url",
                "gateway_order_id",
                "gateway_payment_id",
                "verified_by",
                "verified_at",
            )
        }),
        ("System Metadata", {
            "fields": ("confirmation_sent", "payment_email_sent", "notes", "created_at", "updated_at"),
            "classes": ("collapse",)
        }),
    )

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("user").prefetch_related("items")

    @admin.action(description="Mark selected orders as paid")
    def mark_paid(self, request, queryset):
        updated, skipped = 0, 0
        for order in queryset:
            try:
                _, changed = mark_order_paid(order.id, verified_by=request.user.get_username())
                updated += int(changed)
            except InvalidTransition:
                skipped += 1
        self.message_user(request, f"{updated} orders marked paid, {skipped} skipped", messages.SUCCESS)

    @admin.action(description="Cancel selected orders")
    def cancel_orders(self, request, queryset):
        cancelled, skipped = 0, 0
        for order in queryset:
            try:
                cancel_order(order.id, reason=f"Cancelled by {request.user.get_username()}")
                cancelled += 1
            except InvalidTransition:
                skipped += 1
        self.message_user(request, f"{cancelled} orders cancelled, {skipped} skipped", messages.SUCCESS)


@admin.register(OrderItem)
class OrderItemAdmin(admin.ModelAdmin):
    list_display = ("id", "order", "product_name", "price", "quantity")
    list_filter = (("order__created_at", admin.DateFieldListFilter),)
    search_fields = ("product_name", "order__order_number")
    list_select_related = ("order",)


@admin.register(CartItem)
class CartItemAdmin(admin.ModelAdmin):
    list_display = ("user", "product", "quantity", "updated_at")
    list_select_related = ("user", "product")


@admin.register(StoreSettings)
class StoreSettingsAdmin(admin.ModelAdmin):
    list_display = ("id", "updated_at")
