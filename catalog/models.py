# catalog/models.py
import re
import uuid

from django.db import models
from django.urls import reverse
from django.utils.text import slugify

PLACEHOLDER_IMAGE = '/static/images/placeholder.svg'


class Product(models.Model):
    CATEGORY_CHOICES = [
        ('Silk Sarees', 'Silk Sarees'),
        ('Cotton Sarees', 'Cotton Sarees'),
        ('Designer Sarees', 'Designer Sarees'),
        ('Bridal Sarees', 'Bridal Sarees'),
        ('Festive Wear', 'Festive Wear'),
        ('Casual Sarees', 'Casual Sarees'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=200, unique=True, blank=True)
    description = models.TextField(blank=True, null=True)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    original_price = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    category = models.CharField(max_length=60, choices=CATEGORY_CHOICES, db_index=True)
    fabric = models.CharField(max_length=60, blank=True, default='')
    color = models.CharField(max_length=60, blank=True, default='')
    # null means stock is not tracked for this product
    stock_quantity = models.IntegerField(blank=True, null=True)
    images = models.JSONField(default=list, blank=True)
    active = models.BooleanField(default=True, db_index=True)
    featured = models.BooleanField(default=False, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-featured', '-created_at']
        indexes = [
            models.Index(fields=['active', 'category'], name='catalog_prod_active_cat_idx'),
        ]

    def save(self, *args, **kwargs):
        if not self.slug:
            clean_name = re.sub(r'[^\w\s-]', '', self.name)
            clean_name = re.sub(r'\s+', ' ', clean_name).strip()
            base_slug = slugify(clean_name) or 'saree'

            slug = base_slug
            counter = 1
            while self.__class__.objects.filter(slug=slug).exclude(pk=self.pk).exists():
                slug = f"{base_slug}-{counter}"
                counter += 1

            self.slug = slug
        super().save(*args, **kwargs)

    def get_absolute_url(self):
        return reverse('product_detail', kwargs={'key': self.slug})

    @property
    def image_url(self):
        """First image URL, or the placeholder"""
        if self.images:
            return self.images[0]
        return PLACEHOLDER_IMAGE

    @property
    def on_sale(self):
        return bool(self.original_price and self.original_price > self.price)

    @property
    def discount_percent(self):
        if self.on_sale:
            return int(((self.original_price - self.price) / self.original_price) * 100)
        return 0

    @property
    def in_stock(self):
        return self.stock_quantity is None or self.stock_quantity > 0

    def to_dict(self):
        return {
            'id': str(self.id),
            'name': self.name,
            'slug': self.slug,
            'description': self.description or '',
            'price': float(self.price),
            'original_price': float(self.original_price) if self.original_price else None,
            'category': self.category,
            'fabric': self.fabric,
            'color': self.color,
            'stock_quantity': self.stock_quantity,
            'images': self.images or [],
            'image_url': self.image_url,
            'on_sale': self.on_sale,
            'discount_percent': self.discount_percent,
            'in_stock': self.in_stock,
            'featured': self.featured,
            'active': self.active,
        }

    def __str__(self):
        return f"{self.name} ({self.category})"
