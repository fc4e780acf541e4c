"""URL configuration for the registration app.

Includes checkout, manual verification, QR lookup, the Chapa webhook, and
the compatibility router for the old single-entry API. Mount these under a
prefix in the host project::

    urlpatterns = [
        path("tickets/", include("django_expo.registration.urls")),
    ]
"""

from django.urls import path

from django_expo.registration.api import api_router
from django_expo.registration.views import CheckoutView, QRView, VerifyView
from django_expo.registration.webhooks import chapa_webhook

app_name = "registration"

urlpatterns = [
    path("checkout/", CheckoutView.as_view(), name="checkout"),
    path("verify/", VerifyView.as_view(), name="verify"),
    path("qr/", QRView.as_view(), name="qr"),
    path("webhooks/chapa/", chapa_webhook, name="chapa-webhook"),
    path("api/", api_router, name="api"),
]
