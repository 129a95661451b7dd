from django.urls import path
from . import views

urlpatterns = [
    path('products', views.product_list, name='product_list'),
    path('products/<str:key>', views.product_detail, name='product_detail'),
    path('categories', views.category_list, name='category_list'),
]
