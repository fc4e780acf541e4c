"""Error taxonomy for the ticket purchase workflow.

Input problems are reported with Django's own
:class:`~django.core.exceptions.ValidationError`; everything else raised by
the services derives from :class:`TicketingError`.  Views map each class to
an HTTP status through ``status_code``.
"""

import http


class TicketingError(Exception):
    """Base class for ticketing failures that views translate into responses."""

    status_code: int = http.HTTPStatus.INTERNAL_SERVER_ERROR
    public_message: str = "server error"

    def __init__(self, message: str = "", *, reference: str = "") -> None:
        """Store the internal message and the batch reference it concerns.

        Args:
            message: Detail for server-side logs. Never sent to clients
                for ``ServerError``.
            reference: The ticket batch reference involved, if known.
        """
        super().__init__(message or self.public_message)
        self.reference = reference


class NotFoundError(TicketingError):
    """An unknown ticket type, reference, or QR token."""

    status_code = http.HTTPStatus.NOT_FOUND
    public_message = "not found"


class GatewayError(TicketingError):
    """Transport failure or malformed response from the payment gateway.

    Retryable by the caller. Pending tickets are left untouched.
    """

    status_code = http.HTTPStatus.BAD_GATEWAY
    public_message = "failed to initialize payment"


class VerificationError(GatewayError):
    """The gateway verification call itself failed.

    This means "try again later", never "payment failed".
    """

    status_code = http.HTTPStatus.SERVICE_UNAVAILABLE
    public_message = "verify failed"


class ServerError(TicketingError):
    """Unexpected internal fault, surfaced to callers as an opaque message."""
