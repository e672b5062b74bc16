from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/orders/", include("apps.orders.urls")),
    path("api/payments/", include("apps.payments.urls")),
    path("api/catalog/", include("apps.catalog.urls")),
    path("api/", include("apps.monitoring.urls")),
]
