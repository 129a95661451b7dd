import uuid
from datetime import timedelta
from decimal import Decimal, InvalidOperation

from django.core.paginator import EmptyPage, Paginator
from django.db.models import Count, F, Q
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.utils import timezone
from django.views.decorators.http import require_GET

from .models import Product

PAGE_SIZE = 20
NEW_ARRIVAL_DAYS = 30

SORT_ORDERS = {
    'price_asc': ('price',),
    'price_desc': ('-price',),
    'newest': ('-created_at',),
    'name': ('name',),
}


def _split_param(value):
    return [part.strip() for part in value.split(',') if part.strip()]


def _decimal_param(value):
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError):
        return None
    # NaN and Infinity parse but are not valid filter bounds
    if not amount.is_finite():
        return None
    return amount


def filter_products(params, queryset=None):
    """Apply storefront filters from a query dict to the active catalog"""
    products = queryset if queryset is not None else Product.objects.filter(active=True)

    category = params.get('category', '').strip()
    if category and category.lower() != 'all':
        # "silk" should match "Silk Sarees"
        products = products.filter(category__icontains=category.replace('-', ' '))

    query = params.get('q', '').strip()
    if query:
        products = products.filter(Q(name__icontains=query) | Q(description__icontains=query))

    min_price = _decimal_param(params.get('min_price'))
    if min_price is not None:
        products = products.filter(price__gte=min_price)
    max_price = _decimal_param(params.get('max_price'))
    if max_price is not None:
        products = products.filter(price__lte=max_price)

    colors = _split_param(params.get('color', ''))
    if colors:
        color_filter = Q()
        for color in colors:
            color_filter |= Q(color__iexact=color)
        products = products.filter(color_filter)

    fabrics = _split_param(params.get('fabric', ''))
    if fabrics:
        fabric_filter = Q()
        for fabric in fabrics:
            fabric_filter |= Q(fabric__iexact=fabric)
        products = products.filter(fabric_filter)

    if params.get('featured') == '1':
        products = products.filter(featured=True)
    if params.get('sale') == '1':
        products = products.filter(original_price__gt=F('price'))
    if params.get('new') == '1':
        products = products.filter(created_at__gte=timezone.now() - timedelta(days=NEW_ARRIVAL_DAYS))

    order = SORT_ORDERS.get(params.get('sort', ''))
    if order:
        products = products.order_by(*order)
    return products


@require_GET
def product_list(request):
    """Paginated storefront listing, 20 per page"""
    products = filter_products(request.GET)

    try:
        page = int(request.GET.get('page', 1))
    except ValueError:
        page = 1

    paginator = Paginator(products, PAGE_SIZE)
    try:
        products_page = paginator.page(page)
    except EmptyPage:
        return JsonResponse({
            'success': True,
            'products': [],
            'page': page,
            'has_next': False,
            'total': paginator.count,
        })

    return JsonResponse({
        'success': True,
        'products': [product.to_dict() for product in products_page],
        'page': page,
        'has_next': products_page.has_next(),
        'total': paginator.count,
    })


@require_GET
def product_detail(request, key):
    """Look a product up by uuid or slug"""
    try:
        product_id = uuid.UUID(key)
    except ValueError:
        product = get_object_or_404(Product, slug=key, active=True)
    else:
        product = get_object_or_404(Product, id=product_id, active=True)

    related = (
        Product.objects.filter(active=True, category=product.category)
        .exclude(id=product.id)
        .order_by('?')[:8]
    )
    return JsonResponse({
        'success': True,
        'product': product.to_dict(),
        'related': [item.to_dict() for item in related],
    })


@require_GET
def category_list(request):
    categories = (
        Product.objects.filter(active=True)
        .values('category')
        .annotate(count=Count('id'))
        .order_by('category')
    )
    return JsonResponse({
        'success': True,
        'categories': [
            {'name': row['category'], 'count': row['count']}
            for row in categories
        ],
    })
