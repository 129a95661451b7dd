from django.contrib import admin
from django.urls import path, include
from django.conf import settings
from django.conf.urls.static import static
from . import views

urlpatterns = [
    # ============ STOREFRONT API ============
    path("api/", include("catalog.urls")),
    path("api/", include("accounts.urls")),
    path("api/", include("orders.urls")),

    # ============ OPERATIONS ============
    path("api/test-connection", views.test_connection, name="test_connection"),
    path("api/debug/env-check", views.env_check, name="env_check"),

    # ============ ADMIN ============
    path("admin/", admin.site.urls),
]

urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)
