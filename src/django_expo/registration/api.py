"""Single-entry API router kept for clients of the old ``api.php`` endpoint.

Requests of the form ``api/?target=tickets&action=create`` are dispatched
through a closed registry of ``(target, action)`` pairs. Only pairs that were
registered below are reachable; anything else is answered with 404 and no
lookup is ever derived from the request text itself.
"""

import http
import logging
from collections.abc import Callable

from django.http import HttpRequest, HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt

from django_expo.registration.views import CheckoutView, QRView, VerifyView
from django_expo.registration.webhooks import chapa_webhook

logger = logging.getLogger(__name__)

ActionView = Callable[..., HttpResponse]


class ActionRegistry:
    """Registry mapping ``(target, action)`` pairs to view callables."""

    def __init__(self) -> None:
        """Initialize an empty action registry."""
        self._registry: dict[tuple[str, str], ActionView] = {}

    def register(self, target: str, action: str, view: ActionView) -> None:
        """Register ``view`` as the handler for ``target``/``action``.

        Args:
            target: Resource name, e.g. ``"tickets"``.
            action: Operation name, e.g. ``"create"``.
            view: A Django view callable.
        """
        self._registry[(target, action)] = view

    def get(self, target: str, action: str) -> ActionView | None:
        """Return the view registered for the pair, or ``None``."""
        return self._registry.get((target.strip().lower(), action.strip().lower()))

    def keys(self) -> list[tuple[str, str]]:
        """Return all registered ``(target, action)`` pairs."""
        return list(self._registry.keys())


registry = ActionRegistry()

registry.register("tickets", "create", CheckoutView.as_view())
registry.register("tickets", "verify", VerifyView.as_view())
registry.register("tickets", "webhook", chapa_webhook)
registry.register("tickets", "qr", QRView.as_view())


@csrf_exempt
def api_router(request: HttpRequest) -> HttpResponse:
    """Dispatch ``?target=...&action=...`` to the registered view.

    Args:
        request: The incoming HTTP request.

    Returns:
        The registered view's response, or a JSON 400/404 error envelope.
    """
    target = request.GET.get("target", "")
    action = request.GET.get("action", "")
    if not target:
        return JsonResponse({"ok": False, "error": "target required"}, status=http.HTTPStatus.BAD_REQUEST)

    view = registry.get(target, action)
    if view is None:
        logger.info("No API handler for target=%r action=%r", target[:50], action[:50])
        return JsonResponse({"ok": False, "error": "not found"}, status=http.HTTPStatus.NOT_FOUND)
    return view(request)
