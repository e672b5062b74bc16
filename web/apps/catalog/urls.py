from django.urls import path
from .views import AvailabilityView, ProductDetailView, ProductStockView
app_name = "catalog"

urlpatterns = [
    path("products/check-availability/", AvailabilityView.as_view(), name="check-availability"),
    path("products/<uuid:pid>/", ProductDetailView.as_view(), name="product-detail"),
    path("products/<uuid:pid>/stock/", ProductStockView.as_view(), name="product-stock"),
]
