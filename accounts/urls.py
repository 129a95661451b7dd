from django.urls import path
from . import views

urlpatterns = [
    path("auth/csrf", views.csrf, name="csrf"),
    path("auth/register", views.register, name="register"),
    path("auth/login", views.login_view, name="login"),
    path("auth/logout", views.logout_view, name="logout"),
    path("auth/me", views.me, name="me"),
    path("wishlist", views.wishlist, name="wishlist"),
    path("addresses", views.addresses, name="addresses"),
    path("addresses/<int:address_id>", views.delete_address, name="delete_address"),
    path("newsletter/subscribe", views.newsletter_subscribe, name="newsletter_subscribe"),
]
