import logging

from django.contrib.auth import authenticate, get_user_model, login, logout
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.http import JsonResponse
from django.middleware.csrf import get_token
from django.views.decorators.csrf import ensure_csrf_cookie
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from catalog.models import Product
from orders.models import StoreSettings
from orders.validators import (
    PayloadError,
    parse_json_body,
    parse_uuid,
    validate_email_address,
    validate_phone_number,
    validate_pincode,
)

from .decorators import api_login_required
from orders.whatsapp_utils import WhatsAppAPI

from .models import Address, NewsletterSubscription, Wishlist

logger = logging.getLogger(__name__)
User = get_user_model()

# ==================== AUTH ====================


@require_GET
@ensure_csrf_cookie
def csrf(request):
    """Sets the csrftoken cookie; clients echo it back in X-CSRFToken"""
    return JsonResponse({"success": True, "csrfToken": get_token(request)})


@require_POST
def register(request):
    try:
        data = parse_json_body(request)
        email = str(data.get("email", "")).strip().lower()
        password = str(data.get("password", ""))
        full_name = str(data.get("full_name", "")).strip()
        phone = str(data.get("phone", "")).strip()

        if not validate_email_address(email):
            return JsonResponse({"success": False, "error": "Valid email required"}, status=400)
        if phone and not validate_phone_number(phone):
            return JsonResponse({"success": False, "error": "Invalid mobile number"}, status=400)
        try:
            validate_password(password)
        except ValidationError as e:
            return JsonResponse({"success": False, "error": " ".join(e.messages)}, status=400)

        if User.objects.filter(username=email).exists():
            return JsonResponse({"success": False, "error": "Email already registered"}, status=400)

        with transaction.atomic():
            user = User.objects.create_user(username=email, email=email, password=password)
            profile = user.profile
            profile.full_name = full_name
            profile.phone = phone
            profile.save()

        login(request, user, backend="django.contrib.auth.backends.ModelBackend")
        logger.info(f"Registered user {user.pk}")
        _send_welcome(profile)
        return JsonResponse({"success": True, "user": profile.to_dict()}, status=201)

    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)
    except IntegrityError:
        return JsonResponse({"success": False, "error": "Email already registered"}, status=400)
    except Exception as e:
        logger.error(f"Register error: {str(e)}", exc_info=True)
        return JsonResponse({"success": False, "error": "Internal error"}, status=500)


def _send_welcome(profile):
    """WhatsApp welcome for new customers who left a number; non-blocking"""
    if not (profile.phone and profile.whatsapp_opt_in and StoreSettings.is_enabled("whatsappEnabled")):
        return
    try:
        WhatsAppAPI().send_welcome_message(profile.phone, profile.full_name or "there")
    except Exception as e:
        logger.error(f"Welcome message for user {profile.user_id} failed: {str(e)}")


@require_POST
def login_view(request):
    try:
        data = parse_json_body(request)
    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)

    email = str(data.get("email", "")).strip().lower()
    password = str(data.get("password", ""))
    user = authenticate(request, username=email, password=password)
    if user is None:
        return JsonResponse({"success": False, "error": "Invalid credentials"}, status=401)

    # user_logged_in merges the guest cart
    login(request, user)
    return JsonResponse({"success": True, "user": user.profile.to_dict()})


@require_POST
def logout_view(request):
    logout(request)
    return JsonResponse({"success": True})


@require_GET
@api_login_required
def me(request):
    return JsonResponse({"success": True, "user": request.user.profile.to_dict()})


# ==================== WISHLIST ====================


@require_http_methods(["GET", "POST", "DELETE"])
@api_login_required
def wishlist(request):
    if request.method == "POST":
        return _add_to_wishlist(request)
    if request.method == "DELETE":
        return _remove_from_wishlist(request)

    rows = Wishlist.objects.filter(user=request.user).select_related("product")
    items = []
    for row in rows:
        product = row.product
        items.append({
            "id": str(product.id),
            "name": product.name,
            "price": float(product.price),
            "originalPrice": float(product.original_price) if product.original_price else None,
            "category": product.category,
            "image": product.image_url,
            "inStock": product.active and product.in_stock,
        })
    return JsonResponse({"success": True, "items": items})


def _add_to_wishlist(request):
    try:
        data = parse_json_body(request)
        product_id = parse_uuid(data.get("productId"), "productId")
    except PayloadError:
        return JsonResponse({"success": False, "error": "Invalid productId"}, status=400)

    product = Product.objects.filter(id=product_id).first()
    if product is None:
        return JsonResponse({"success": False, "error": "Invalid productId"}, status=400)

    # upsert, a second add is a no-op
    Wishlist.objects.get_or_create(user=request.user, product=product)
    return JsonResponse({"success": True})


def _remove_from_wishlist(request):
    product_id = request.GET.get("productId")
    if not product_id:
        return JsonResponse({"success": False, "error": "Missing productId"}, status=400)
    try:
        product_id = parse_uuid(product_id, "productId")
    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)

    Wishlist.objects.filter(user=request.user, product_id=product_id).delete()
    return JsonResponse({"success": True})


# ==================== ADDRESS BOOK ====================

ADDRESS_REQUIRED_FIELDS = ["full_name", "phone", "address_line1", "city", "state", "pincode"]


@require_http_methods(["GET", "POST"])
@api_login_required
def addresses(request):
    if request.method == "GET":
        rows = Address.objects.filter(user=request.user)
        return JsonResponse({"success": True, "addresses": [row.to_dict() for row in rows]})

    try:
        data = parse_json_body(request)
    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)

    for field in ADDRESS_REQUIRED_FIELDS:
        if not str(data.get(field, "")).strip():
            return JsonResponse({"success": False, "error": f"{field} is required"}, status=400)

    phone = str(data["phone"]).strip()
    pincode = str(data["pincode"]).strip()
    if not validate_phone_number(phone):
        return JsonResponse({"success": False, "error": "Invalid mobile number"}, status=400)
    if not validate_pincode(pincode):
        return JsonResponse({"success": False, "error": "Invalid pincode"}, status=400)

    has_addresses = Address.objects.filter(user=request.user).exists()
    is_default = bool(data.get("is_default")) or not has_addresses

    with transaction.atomic():
        if is_default:
            Address.objects.filter(user=request.user, is_default=True).update(is_default=False)
        address = Address.objects.create(
            user=request.user,
            name=str(data.get("name") or "Home").strip()[:50],
            full_name=str(data["full_name"]).strip(),
            phone=phone,
            address_line1=str(data["address_line1"]).strip(),
            address_line2=str(data.get("address_line2", "")).strip(),
            city=str(data["city"]).strip(),
            state=str(data["state"]).strip(),
            pincode=pincode,
            is_default=is_default,
        )

    return JsonResponse({"success": True, "address": address.to_dict()}, status=201)


@require_http_methods(["DELETE"])
@api_login_required
def delete_address(request, address_id):
    deleted, _ = Address.objects.filter(user=request.user, id=address_id).delete()
    if not deleted:
        return JsonResponse({"success": False, "error": "Not found"}, status=404)
    return JsonResponse({"success": True})


# ==================== NEWSLETTER ====================


@require_POST
def newsletter_subscribe(request):
    try:
        data = parse_json_body(request)
    except PayloadError:
        return JsonResponse({"success": False, "error": "Valid email required"}, status=400)

    email = str(data.get("email", "")).strip().lower()
    if not validate_email_address(email):
        return JsonResponse({"success": False, "error": "Valid email required"}, status=400)

    try:
        NewsletterSubscription.objects.update_or_create(email=email, defaults={"active": True})
    except Exception as e:
        # Non-blocking, the visitor still sees a success message
        logger.error(f"Newsletter subscription error: {str(e)}")
        return JsonResponse({"success": True, "message": "Subscription recorded"})

    return JsonResponse({"success": True, "message": "Successfully subscribed"})
