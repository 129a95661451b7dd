from django.contrib import admin
from .models import Address, NewsletterSubscription, Profile, Wishlist


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ("user", "full_name", "email", "phone", "role", "whatsapp_opt_in", "created_at")
    list_filter = ("role", "whatsapp_opt_in")
    search_fields = ("full_name", "email", "phone")
    list_select_related = ("user",)


@admin.register(Address)
class AddressAdmin(admin.ModelAdmin):
    list_display = ("user", "name", "full_name", "phone", "city", "state", "pincode", "is_default")
    list_filter = ("state", "is_default")
    search_fields = ("full_name", "phone", "pincode", "city")


@admin.register(Wishlist)
class WishlistAdmin(admin.ModelAdmin):
    list_display = ("user", "product", "created_at")
    list_select_related = ("user", "product")


@admin.register(NewsletterSubscription)
class NewsletterSubscriptionAdmin(admin.ModelAdmin):
    list_display = ("email", "active", "subscribed_at")
    list_filter = ("active",)
    search_fields = ("email",)
