from django.urls import path
from . import admin_views, views

urlpatterns = [
    # Cart
    path("cart", views.cart, name="cart"),
    path("cart/add", views.add_to_cart, name="add_to_cart"),
    path("cart/update", views.update_cart_quantity, name="update_cart_quantity"),
    path("cart/remove", views.remove_from_cart, name="remove_from_cart"),
    path("cart/clear", views.clear_cart, name="clear_cart"),
    path("cart/notify", views.cart_notify, name="cart_notify"),

    # Orders
    path("orders", views.order_list, name="order_list"),
    path("orders/create-upi", views.create_upi_order, name="create_upi_order"),
    path("orders/get", views.order_detail, name="order_detail"),
    path("orders/upi-link", views.order_upi_link, name="order_upi_link"),
    path("orders/update-proof", views.update_payment_proof, name="update_payment_proof"),
    path("orders/confirm", views.confirm_order, name="confirm_order"),
    path("upload/payment-proof", views.upload_payment_proof, name="upload_payment_proof"),

    # Payment gateway
    path("payments/config", views.payment_config, name="payment_config"),
    path("payments/create-order", views.create_payment_order, name="create_payment_order"),
    path("payments/verify", views.verify_payment, name="verify_payment"),
    path("payments/webhooks/razorpay", views.razorpay_webhook, name="razorpay_webhook"),

    # WhatsApp
    path("whatsapp/send-message", views.whatsapp_send_message, name="whatsapp_send_message"),
    path("whatsapp/webhook", views.whatsapp_webhook, name="whatsapp_webhook"),

    # Cron
    path("cron/auto-cancel-pending", views.cron_auto_cancel_pending, name="cron_auto_cancel_pending"),

    # Admin back-office
    path("admin/orders", admin_views.admin_order_list, name="admin_order_list"),
    path("admin/orders/pending", admin_views.admin_pending_orders, name="admin_pending_orders"),
    path("admin/orders/mark-paid", admin_views.admin_mark_paid, name="admin_mark_paid"),
    path("admin/orders/cancel", admin_views.admin_cancel_order, name="admin_cancel_order"),
    path("admin/orders/update-status", admin_views.admin_update_order_status, name="admin_update_order_status"),
    path("admin/analytics", admin_views.admin_analytics, name="admin_analytics"),
    path("admin/settings", admin_views.admin_settings, name="admin_settings"),
    path("admin/products", admin_views.admin_products, name="admin_products"),
    path("admin/products/<uuid:product_id>", admin_views.admin_product_detail, name="admin_product_detail"),
    path("admin/customers", admin_views.admin_customers, name="admin_customers"),
]
