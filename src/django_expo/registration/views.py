"""JSON views for the ticket purchase workflow.

Provides checkout creation, manual payment verification, and QR lookup.
Every view answers with a ``{"ok": ...}`` JSON envelope and maps the
ticketing error taxonomy onto HTTP status codes. Unexpected failures are
logged with full detail but reported to the caller only as
``"server error"``.
"""

import http
import json
import logging

from django.core.exceptions import ValidationError
from django.http import HttpRequest, HttpResponse, JsonResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from django_expo.registration.exceptions import NotFoundError, ServerError, TicketingError
from django_expo.registration.models import Ticket
from django_expo.registration.services.checkout import CheckoutService
from django_expo.registration.services.issuance import build_qr_url
from django_expo.registration.services.reconciliation import ReconciliationService

logger = logging.getLogger(__name__)


def request_data(request: HttpRequest) -> dict[str, object]:
    """Return the request parameters from a JSON body, form body, or query string.

    Raises:
        ValidationError: If the body claims to be JSON but is not a JSON object.
    """
    if request.content_type == "application/json" and request.body:
        try:
            payload = json.loads(request.body)
        except ValueError as exc:
            raise ValidationError("malformed JSON body") from exc
        if not isinstance(payload, dict):
            raise ValidationError("JSON body must be an object")
        return payload
    if request.method == "POST":
        return request.POST.dict()
    return request.GET.dict()


def error_response(exc: Exception, *, action: str, reference: str = "") -> JsonResponse:
    """Translate an exception into the JSON error envelope.

    Args:
        exc: The exception raised while handling the request.
        action: Name of the operation, for log context.
        reference: Batch reference involved, if known.

    Returns:
        A ``JsonResponse`` with ``ok: false``.
    """
    if isinstance(exc, ValidationError):
        body: dict[str, object] = {"ok": False, "error": "missing or invalid fields"}
        if hasattr(exc, "error_dict"):
            body["fields"] = {name: messages[0] for name, messages in exc.message_dict.items()}
        else:
            body["error"] = exc.messages[0]
        return JsonResponse(body, status=http.HTTPStatus.BAD_REQUEST)

    if isinstance(exc, TicketingError) and not isinstance(exc, ServerError):
        reference = reference or exc.reference
        if isinstance(exc, NotFoundError):
            logger.warning("%s: %s", action, exc)
        else:
            logger.error("%s failed for reference %s: %s", action, reference or "-", exc)
        return JsonResponse({"ok": False, "error": exc.public_message}, status=exc.status_code)

    logger.exception("%s failed for reference %s", action, reference or "-")
    return JsonResponse({"ok": False, "error": ServerError.public_message}, status=ServerError.status_code)


@method_decorator(csrf_exempt, name="dispatch")
class TicketAPIView(View):
    """Base class for the JSON ticket endpoints."""

    action: str = ""

    def http_method_not_allowed(self, request: HttpRequest, *args: object, **kwargs: object) -> HttpResponse:  # noqa: ARG002
        """Answer unsupported methods with the JSON error envelope."""
        response = JsonResponse(
            {"ok": False, "error": "method not allowed"},
            status=http.HTTPStatus.METHOD_NOT_ALLOWED,
        )
        response["Allow"] = ", ".join(m.upper() for m in self._allowed_methods())
        return response


class CheckoutView(TicketAPIView):
    """Create a pending ticket batch and return Chapa's checkout URL.

    Accepts ``ticket_type_id``, ``full_name``, ``email``, ``phone`` and an
    optional ``quantity`` as form fields or a JSON object.
    """

    action = "create"

    def post(self, request: HttpRequest, **kwargs: str) -> HttpResponse:  # noqa: ARG002
        """Run the checkout and return ``{ok, checkout_url, reference}``."""
        try:
            data = request_data(request)
            result = CheckoutService.create_order(
                ticket_type_id=data.get("ticket_type_id"),
                full_name=data.get("full_name"),
                email=data.get("email"),
                phone=data.get("phone"),
                quantity=data.get("quantity", 1),
            )
        except Exception as exc:  # noqa: BLE001
            return error_response(exc, action=self.action)

        return JsonResponse({"ok": True, "checkout_url": result.checkout_url, "reference": result.reference})


class VerifyView(TicketAPIView):
    """Manually re-check a batch with Chapa, e.g. when a webhook was missed.

    Also serves as the browser return target after the hosted checkout.
    """

    action = "verify"

    def get(self, request: HttpRequest, **kwargs: str) -> HttpResponse:  # noqa: ARG002
        """Verify the ``reference`` parameter and report the outcome."""
        reference = ""
        try:
            reference = str(request_data(request).get("reference") or "")
            result = ReconciliationService.confirm_payment(reference, source="manual")
        except Exception as exc:  # noqa: BLE001
            return error_response(exc, action=self.action, reference=reference)

        if not result.paid:
            return JsonResponse({"ok": False, "error": "payment not marked success"})
        return JsonResponse({"ok": True, "data": result.verification.data if result.verification else {}})

    post = get


class QRView(TicketAPIView):
    """Return the QR image URL for an issued ticket token."""

    action = "qr"

    def get(self, request: HttpRequest, **kwargs: str) -> HttpResponse:  # noqa: ARG002
        """Look up ``token`` and return ``{ok, qr_url}``."""
        token = str(request.GET.get("token") or "").strip()
        if not token:
            return JsonResponse({"ok": False, "error": "token required"}, status=http.HTTPStatus.BAD_REQUEST)

        if not Ticket.objects.filter(qr_token=token, status=Ticket.Status.PAID).exists():
            return error_response(NotFoundError("Unknown QR token"), action=self.action)

        return JsonResponse({"ok": True, "qr_url": build_qr_url(token)})
