# orders/cart_utils.py
import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from django.conf import settings
from django.db import transaction

from catalog.models import Product

from .models import CartItem, StoreSettings
from .validators import PayloadError

logger = logging.getLogger(__name__)

GUEST_CART_KEY = "cart:guest"


# ==================== CART LINES ====================
#
# A cart is a list of lines {id, name, price, image, quantity} in the
# order products were first added. Every helper returns a new list.


def _line_from_product(product):
    if isinstance(product, Product):
        return {
            "id": str(product.id),
            "name": product.name,
            "price": float(product.price),
            "image": product.image_url,
        }
    return {
        "id": str(product["id"]),
        "name": product.get("name", ""),
        "price": float(product.get("price", 0)),
        "image": product.get("image", ""),
    }


def add_item(items, product, quantity=1):
    """Add a product, incrementing the quantity when already present"""
    line = _line_from_product(product)
    cart = [dict(item) for item in items]
    for item in cart:
        if item["id"] == line["id"]:
            item["quantity"] += quantity
            return cart
    line["quantity"] = quantity
    cart.append(line)
    return cart


def update_quantity(items, product_id, quantity):
    product_id = str(product_id)
    if quantity <= 0:
        return remove_item(items, product_id)
    cart = [dict(item) for item in items]
    for item in cart:
        if item["id"] == product_id:
            item["quantity"] = quantity
    return cart


def remove_item(items, product_id):
    product_id = str(product_id)
    return [dict(item) for item in items if item["id"] != product_id]


def cart_summary(items):
    total = sum(Decimal(str(item["price"])) * item["quantity"] for item in items)
    return {
        "items": items,
        "total": float(total),
        "item_count": sum(item["quantity"] for item in items),
    }


def merge_carts(user_items, guest_items):
    """
    Sum quantities for products in both carts, append guest-only lines.
    guest {A:1} + user {A:2, B:1} -> {A:3, B:1}
    """
    merged = [dict(item) for item in user_items]
    index = {item["id"]: item for item in merged}
    for guest in guest_items:
        existing = index.get(guest["id"])
        if existing:
            existing["quantity"] += guest["quantity"]
        else:
            line = dict(guest)
            merged.append(line)
            index[line["id"]] = line
    return merged


# ==================== SESSION STORAGE ====================


def cart_storage_key(user=None):
    if user is not None and user.is_authenticated:
        return f"cart:{user.pk}"
    return GUEST_CART_KEY


def get_cart(request):
    """Cart lines for the current identity"""
    return list(request.session.get(cart_storage_key(request.user), []))


def save_cart(request, items):
    request.session[cart_storage_key(request.user)] = items
    request.session.modified = True
    if request.user.is_authenticated:
        sync_user_cart(request.user, [
            {"product_id": item["id"], "quantity": item["quantity"]} for item in items
        ])


def load_server_cart(user):
    rows = CartItem.objects.filter(user=user).select_related("product").order_by("id")
    items = []
    for row in rows:
        line = _line_from_product(row.product)
        line["quantity"] = row.quantity
        items.append(line)
    return items


def merge_guest_cart(request, user):
    """Fold the guest cart into the signed-in user's cart, then drop the guest key"""
    guest_items = request.session.pop(GUEST_CART_KEY, [])
    user_key = cart_storage_key(user)
    user_items = request.session.get(user_key)
    if user_items is None:
        user_items = load_server_cart(user)

    merged = merge_carts(user_items, guest_items) if guest_items else list(user_items)
    request.session[user_key] = merged
    request.session.modified = True

    if guest_items:
        sync_user_cart(user, [{"product_id": item["id"], "quantity": item["quantity"]} for item in merged])
        logger.info(f"Merged {len(guest_items)} guest cart lines for user {user.pk}")
    return merged


def sync_user_cart(user, items):
    """
    Replace the stored cart wholesale: upsert every given line and delete
    lines that are no longer present.
    """
    quantities = {}
    for item in items:
        product_id = str(item["product_id"])
        quantities[product_id] = quantities.get(product_id, 0) + int(item["quantity"])

    known = {str(pk) for pk in Product.objects.filter(id__in=list(quantities)).values_list("id", flat=True)}
    missing = set(quantities) - known
    if missing:
        raise PayloadError("Unknown product in cart")

    with transaction.atomic():
        for product_id, quantity in quantities.items():
            CartItem.objects.update_or_create(
                user=user, product_id=product_id, defaults={"quantity": quantity}
            )
        CartItem.objects.filter(user=user).exclude(product_id__in=list(quantities)).delete()

    return len(quantities)


# ==================== TOTALS ====================


def _to_decimal(value, default):
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal(str(default))


def pricing_config():
    """Pricing knobs from the admin settings row, env defaults otherwise"""
    store = StoreSettings.current()
    return {
        "free_shipping_threshold": _to_decimal(store.get("freeShippingThreshold"), settings.FREE_SHIPPING_THRESHOLD),
        "shipping_fee": _to_decimal(store.get("shippingFee"), settings.SHIPPING_FEE),
        "tax_rate": _to_decimal(store.get("taxRate"), settings.TAX_RATE),
    }


def calculate_order_totals(lines, include_tax=False, discount=0, config=None):
    """Calculate totals server-side from catalog-priced lines"""
    config = config or pricing_config()

    subtotal = sum((Decimal(str(line["price"])) * line["quantity"] for line in lines), Decimal("0"))

    if subtotal >= config["free_shipping_threshold"] or not lines:
        shipping = Decimal("0")
    else:
        shipping = config["shipping_fee"]

    tax = Decimal("0")
    if include_tax:
        tax = (subtotal * config["tax_rate"] / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)

    discount = Decimal(str(discount or 0))
    total = max(subtotal + shipping + tax - discount, Decimal("0"))

    return {
        "subtotal": subtotal,
        "shipping": shipping,
        "tax": tax,
        "discount": discount,
        "total": total,
    }


def validate_items_against_db(items):
    """
    Re-price requested items from the catalog.
    Raises PayloadError for unknown, inactive or out-of-stock products.
    """
    if not items:
        raise PayloadError("Cart is empty")

    quantities = {}
    for item in items:
        quantities[item["product_id"]] = quantities.get(item["product_id"], 0) + item["quantity"]

    products = Product.objects.in_bulk(list(quantities))

    lines = []
    for product_id, quantity in quantities.items():
        product = products.get(product_id)
        if product is None or not product.active:
            raise PayloadError("Some items in your cart are no longer available")

        stock = product.stock_quantity
        # zero counts as untracked, same as null
        if stock and quantity > stock:
            raise PayloadError(f"Insufficient stock for {product.name}")

        lines.append({
            "product": product,
            "product_id": product.id,
            "name": product.name,
            "price": product.price,
            "quantity": quantity,
            "image": product.image_url,
        })
    return lines
