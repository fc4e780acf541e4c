"""Chapa webhook handling for the registration app.

Chapa posts a notification to the callback URL when a hosted checkout
completes. The body is attacker-reachable, so its claimed status is only used
to find the batch: the handler always re-verifies the transaction with Chapa
through :meth:`ReconciliationService.confirm_payment` and treats that answer as
ground truth.

Response codes are chosen so that Chapa stops retrying business outcomes but
retries our own transient failures:

* 200 when the delivery was processed, whether or not the payment succeeded
* 400 for malformed payloads or a bad signature
* 404 when the reference matches no ticket batch
* 503 when the verification call to Chapa failed

Usage in URL configuration::

    from django_expo.registration.webhooks import chapa_webhook

    urlpatterns = [
        path("webhooks/chapa/", chapa_webhook),
    ]
"""

import http
import json
import logging
from typing import Any

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from django_expo.registration.chapa_utils import compute_signature, signature_matches
from django_expo.registration.services.reconciliation import ReconciliationService
from django_expo.registration.views import error_response
from django_expo.settings import get_config

logger = logging.getLogger(__name__)


def _parse_payload(request: HttpRequest) -> dict[str, Any]:
    """Decode the webhook body, falling back to form data."""
    try:
        payload = json.loads(request.body) if request.body else None
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        return payload
    return request.POST.dict()


def extract_reference(payload: dict[str, Any]) -> str:
    """Find the transaction reference in a Chapa webhook payload.

    Chapa has used both a nested ``data`` envelope and a flat body; the local
    batch reference (``tx_ref``) is preferred over Chapa's own ``reference``
    when both are present, but either resolves to the batch.

    Returns:
        The reference, or an empty string if the payload carries none.
    """
    data = payload.get("data")
    data = data if isinstance(data, dict) else {}
    for value in (data.get("tx_ref"), payload.get("tx_ref"), data.get("reference"), payload.get("reference")):
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _signature_valid(request: HttpRequest, secret: str) -> bool:
    """Check the HMAC signature headers Chapa adds when a webhook secret is set."""
    body_signature = request.headers.get("x-chapa-signature", "")
    if body_signature and signature_matches(secret, request.body, body_signature):
        return True
    secret_signature = request.headers.get("chapa-signature", "")
    return bool(secret_signature) and secret_signature.strip().lower() == compute_signature(secret, secret.encode())


@csrf_exempt
@require_POST
def chapa_webhook(request: HttpRequest) -> JsonResponse:
    """Receive a Chapa payment notification and reconcile the ticket batch.

    Args:
        request: The incoming HTTP request from Chapa.

    Returns:
        A JSON envelope; see the module docstring for the status codes.
    """
    logger.info("Chapa webhook received: %s", request.body[:2000].decode("utf-8", errors="replace"))

    webhook_secret = get_config().chapa.webhook_secret
    if webhook_secret and not _signature_valid(request, webhook_secret):
        logger.warning("Rejected Chapa webhook with missing or invalid signature")
        return JsonResponse({"ok": False, "error": "invalid signature"}, status=http.HTTPStatus.BAD_REQUEST)

    payload = _parse_payload(request)
    reference = extract_reference(payload)
    if not reference:
        logger.warning("Chapa webhook without a reference")
        return JsonResponse({"ok": False, "error": "missing reference"}, status=http.HTTPStatus.BAD_REQUEST)

    try:
        result = ReconciliationService.confirm_payment(reference, source="webhook")
    except Exception as exc:  # noqa: BLE001
        return error_response(exc, action="webhook", reference=reference)

    if not result.paid:
        return JsonResponse({"ok": False, "error": "payment not successful"})
    return JsonResponse({"ok": True})
