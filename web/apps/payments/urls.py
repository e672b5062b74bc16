from django.urls import path
from .views import PaymentConfirmView, PaymentIntentView
from .views import payment_methods, stripe_webhook
app_name = "payments"

urlpatterns = [
    path("intents/", PaymentIntentView.as_view(), name="intents"),
    path("confirm/", PaymentConfirmView.as_view(), name="confirm"),
    path("webhook/", stripe_webhook, name="webhook"),
    path("methods/", payment_methods, name="methods"),
]
