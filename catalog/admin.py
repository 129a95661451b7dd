from django.contrib import admin
from .models import Product


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ('name', 'category', 'price', 'original_price', 'stock_quantity', 'active', 'featured', 'created_at')
    list_filter = ('category', 'active', 'featured', 'fabric')
    search_fields = ('name', 'slug', 'color', 'fabric')
    ordering = ('-created_at',)
    prepopulated_fields = {'slug': ('name',)}

    fieldsets = (
        ('Product Details', {
            'fields': ('name', 'slug', 'category', 'fabric', 'color', 'description', 'images')
        }),
        ('Pricing', {
            'fields': ('price', 'original_price')
        }),
        ('Inventory & Visibility', {
            'fields': ('stock_quantity', 'active', 'featured')
        }),
        ('Date Information', {
            'fields': ('created_at', 'updated_at'),
        }),
    )

    readonly_fields = ('created_at', 'updated_at')
    actions = ['disable_products', 'enable_products']

    @admin.action(description="Disable selected products")
    def disable_products(self, request, queryset):
        # products are soft-disabled, never deleted
        queryset.update(active=False)

    @admin.action(description="Enable selected products")
    def enable_products(self, request, queryset):
        queryset.update(active=True)

    def has_delete_permission(self, request, obj=None):
        return False
