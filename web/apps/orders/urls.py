from django.urls import path
from .views import OrdersCollectionView, RetrieveOrderView
from .views import OrderEventsView, OrderStatusView
app_name = "orders"

urlpatterns = [
    path("", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST create
    path("events/", OrderEventsView.as_view(), name="orders-events"),
    path("<uuid:oid>/", RetrieveOrderView.as_view(), name="orders-detail"),
    path("<uuid:oid>/status/", OrderStatusView.as_view(), name="orders-status"),
]
