import logging
from decimal import Decimal, InvalidOperation

from django.contrib.auth import get_user_model
from django.db.models import Count, Q, Sum
from django.http import JsonResponse
from django.utils import timezone
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from accounts.decorators import api_admin_required
from accounts.models import Profile
from catalog.models import Product

from .analytics import build_analytics
from .models import Order, StoreSettings
from .order_utils import InvalidTransition, cancel_order, mark_order_paid, update_order_status
from .validators import PayloadError, parse_json_body, parse_uuid

logger = logging.getLogger(__name__)
User = get_user_model()

# ==================== ORDERS ====================


def _order_row(order):
    data = order.to_dict(include_items=True)
    data["customer"] = {
        "id": order.user_id,
        "email": order.user.email,
        "full_name": getattr(getattr(order.user, "profile", None), "full_name", ""),
    }
    return data


@require_GET
@api_admin_required
def admin_order_list(request):
    orders = Order.objects.select_related("user", "user__profile").prefetch_related("items")

    status = request.GET.get("status")
    payment_status = request.GET.get("payment_status")
    if status:
        orders = orders.filter(status=status)
    if payment_status:
        orders = orders.filter(payment_status=payment_status)

    return JsonResponse({"success": True, "orders": [_order_row(order) for order in orders[:200]]})


@require_GET
@api_admin_required
def admin_pending_orders(request):
    """UPI orders waiting for manual payment verification"""
    orders = (
        Order.objects.filter(payment_status=Order.PAYMENT_PENDING)
        .exclude(status=Order.STATUS_CANCELLED)
        .select_related("user", "user__profile")
        .prefetch_related("items")
    )
    return JsonResponse({"success": True, "orders": [_order_row(order) for order in orders]})


def _order_id_from_body(request):
    data = parse_json_body(request)
    if not data.get("id"):
        raise PayloadError("Missing id")
    return parse_uuid(data["id"], "id"), data


@require_POST
@api_admin_required
def admin_mark_paid(request):
    try:
        order_id, data = _order_id_from_body(request)
        order, changed = mark_order_paid(
            order_id,
            transaction_id=str(data.get("upi_transaction_id") or "").strip(),
            verified_by=request.user.get_username(),
        )
        return JsonResponse({"success": True, "changed": changed, "order": order.to_dict()})

    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)
    except Order.DoesNotExist:
        return JsonResponse({"success": False, "error": "Not found"}, status=404)
    except InvalidTransition as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)
    except Exception as e:
        logger.error(f"Mark paid error: {str(e)}", exc_info=True)
        return JsonResponse({"success": False, "error": "Internal error"}, status=500)


@require_POST
@api_admin_required
def admin_cancel_order(request):
    try:
        order_id, data = _order_id_from_body(request)
        order = cancel_order(order_id, reason=str(data.get("reason") or "").strip())
        return JsonResponse({"success": True, "order": order.to_dict()})

    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)
    except Order.DoesNotExist:
        return JsonResponse({"success": False, "error": "Not found"}, status=404)
    except InvalidTransition as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)
    except Exception as e:
        logger.error(f"Cancel order error: {str(e)}", exc_info=True)
        return JsonResponse({"success": False, "error": "Internal error"}, status=500)


@require_POST
@api_admin_required
def admin_update_order_status(request):
    try:
        order_id, data = _order_id_from_body(request)
        if not data.get("status"):
            raise PayloadError("Missing status")
        order = update_order_status(order_id, str(data["status"]))
        return JsonResponse({"success": True, "order": order.to_dict()})

    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)
    except Order.DoesNotExist:
        return JsonResponse({"success": False, "error": "Not found"}, status=404)
    except InvalidTransition as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)
    except Exception as e:
        logger.error(f"Update status error: {str(e)}", exc_info=True)
        return JsonResponse({"success": False, "error": "Internal error"}, status=500)


# ==================== ANALYTICS ====================


@require_GET
@api_admin_required
def admin_analytics(request):
    try:
        orders = []
        queryset = Order.objects.prefetch_related("items__product")
        for order in queryset:
            orders.append({
                "user_id": order.user_id,
                "total_amount": order.total_amount,
                "payment_status": order.payment_status,
                "created_at": order.created_at,
                "items": [
                    {
                        "product_id": item.product_id,
                        "name": item.product.name,
                        "category": item.product.category,
                        "price": item.price,
                        "quantity": item.quantity,
                    }
                    for item in order.items.all()
                ],
            })

        products = list(Product.objects.filter(active=True).values("id", "name", "stock_quantity"))
        customers = list(Profile.objects.filter(role=Profile.ROLE_CUSTOMER).values("user_id"))

        data = build_analytics(orders, products, customers, timezone.localtime())
        return JsonResponse({"success": True, **data})

    except Exception as e:
        logger.error(f"Analytics error: {str(e)}", exc_info=True)
        return JsonResponse({"success": False, "error": "Internal error"}, status=500)


# ==================== SETTINGS ====================


@require_http_methods(["GET", "POST"])
@api_admin_required
def admin_settings(request):
    if request.method == "GET":
        return JsonResponse({"success": True, "settings": StoreSettings.current()})

    try:
        data = parse_json_body(request)
        new_settings = data.get("settings")
        if not isinstance(new_settings, dict):
            raise PayloadError("Invalid settings")

        StoreSettings.objects.update_or_create(
            id=StoreSettings.MAIN_ID, defaults={"settings_data": new_settings}
        )
        logger.info(f"Store settings updated by {request.user.get_username()}")
        return JsonResponse({"success": True, "message": "Settings saved successfully"})

    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)
    except Exception as e:
        logger.error(f"Settings save error: {str(e)}", exc_info=True)
        return JsonResponse({"success": False, "error": "Internal error"}, status=500)


# ==================== PRODUCTS ====================

PRODUCT_TEXT_FIELDS = ("name", "description", "fabric", "color")
PRODUCT_BOOL_FIELDS = ("active", "featured")
TRUE_STRINGS = ("1", "true", "yes", "on")
FALSE_STRINGS = ("0", "false", "no", "off")


def _money(value, field):
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise PayloadError(f"Invalid {field}")
    if not amount.is_finite() or amount < 0:
        raise PayloadError(f"Invalid {field}")
    return amount


def _flag(value, field):
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
    raise PayloadError(f"Invalid {field}")


def _apply_product_fields(product, data, partial=False):
    if not partial:
        for field in ("name", "price", "category"):
            if data.get(field) in (None, ""):
                raise PayloadError(f"{field} is required")

    for field in PRODUCT_TEXT_FIELDS:
        if field in data:
            setattr(product, field, str(data[field] or "").strip())
    if "name" in data and not product.name:
        raise PayloadError("name is required")

    if "price" in data:
        product.price = _money(data["price"], "price")
    if "original_price" in data:
        product.original_price = _money(data["original_price"], "original_price") if data["original_price"] else None

    if "category" in data:
        categories = {choice for choice, _ in Product.CATEGORY_CHOICES}
        if data["category"] not in categories:
            raise PayloadError("Invalid category")
        product.category = data["category"]

    if "stock_quantity" in data:
        stock = data["stock_quantity"]
        if stock is None or stock == "":
            product.stock_quantity = None
        else:
            try:
                product.stock_quantity = int(stock)
            except (TypeError, ValueError):
                raise PayloadError("Invalid stock_quantity")

    if "images" in data:
        images = data["images"]
        if not isinstance(images, list) or not all(isinstance(url, str) for url in images):
            raise PayloadError("Invalid images")
        product.images = images

    for field in PRODUCT_BOOL_FIELDS:
        if field in data:
            setattr(product, field, _flag(data[field], field))

    return product


@require_http_methods(["GET", "POST"])
@api_admin_required
def admin_products(request):
    if request.method == "GET":
        products = Product.objects.all()
        category = request.GET.get("category")
        if category:
            products = products.filter(category=category)
        query = request.GET.get("q", "").strip()
        if query:
            products = products.filter(name__icontains=query)
        return JsonResponse({"success": True, "products": [p.to_dict() for p in products]})

    try:
        product = _apply_product_fields(Product(), parse_json_body(request))
        product.save()
        logger.info(f"Product created: {product.name} ({product.id})")
        return JsonResponse({"success": True, "product": product.to_dict()}, status=201)
    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)
    except Exception as e:
        logger.error(f"Product create error: {str(e)}", exc_info=True)
        return JsonResponse({"success": False, "error": "Internal error"}, status=500)


@require_http_methods(["GET", "POST", "DELETE"])
@api_admin_required
def admin_product_detail(request, product_id):
    product = Product.objects.filter(id=product_id).first()
    if product is None:
        return JsonResponse({"success": False, "error": "Not found"}, status=404)

    if request.method == "GET":
        return JsonResponse({"success": True, "product": product.to_dict()})

    if request.method == "DELETE":
        # Soft-disable, order history keeps referencing the row
        product.active = False
        product.save(update_fields=["active", "updated_at"])
        logger.info(f"Product disabled: {product.name} ({product.id})")
        return JsonResponse({"success": True})

    try:
        _apply_product_fields(product, parse_json_body(request), partial=True)
        product.save()
        return JsonResponse({"success": True, "product": product.to_dict()})
    except PayloadError as e:
        return JsonResponse({"success": False, "error": str(e)}, status=400)
    except Exception as e:
        logger.error(f"Product update error: {str(e)}", exc_info=True)
        return JsonResponse({"success": False, "error": "Internal error"}, status=500)


# ==================== CUSTOMERS ====================


@require_GET
@api_admin_required
def admin_customers(request):
    paid = Q(orders__payment_status=Order.PAYMENT_VERIFIED)
    users = (
        User.objects.filter(profile__role=Profile.ROLE_CUSTOMER)
        .select_related("profile")
        .annotate(order_count=Count("orders"), total_spent=Sum("orders__total_amount", filter=paid))
        .order_by("-date_joined")
    )

    customers = []
    for user in users:
        row = user.profile.to_dict()
        row["order_count"] = user.order_count
        row["total_spent"] = float(user.total_spent or 0)
        row["joined_at"] = user.date_joined.isoformat()
        customers.append(row)

    return JsonResponse({"success": True, "customers": customers})
