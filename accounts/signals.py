import logging

from django.conf import settings
from django.contrib.auth.signals import user_logged_in
from django.db.models.signals import post_save
from django.dispatch import receiver

from .models import Profile

logger = logging.getLogger(__name__)


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def create_profile(sender, instance, created, **kwargs):
    if created:
        Profile.objects.get_or_create(
            user=instance,
            defaults={
                "email": instance.email or "",
                "full_name": instance.get_full_name(),
                "role": Profile.ROLE_ADMIN if instance.is_superuser else Profile.ROLE_CUSTOMER,
            },
        )


@receiver(user_logged_in)
def merge_guest_cart_on_login(sender, request, user, **kwargs):
    """Fold the guest session cart into the user's cart"""
    if request is None or not hasattr(request, "session"):
        return
    from orders.cart_utils import merge_guest_cart

    try:
        merge_guest_cart(request, user)
    except Exception as e:
        # login must not fail because of the cart
        logger.error(f"Guest cart merge failed for user {user.pk}: {str(e)}", exc_info=True)
