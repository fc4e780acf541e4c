"""Checkout service for turning a ticket request into a Chapa hosted checkout.

Validates the buyer's input, writes the PENDING ticket batch in its own
transaction, then asks Chapa for a hosted payment page. The batch is committed
before Chapa is contacted so that a webhook can never observe a half-written
batch. All methods are stateless and operate on model instances directly.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from urllib.parse import urlencode

from django.core.exceptions import ValidationError
from django.db import transaction
from django.urls import reverse
from django.utils import timezone

from django_expo.registration.chapa_client import ChapaClient
from django_expo.registration.exceptions import GatewayError, NotFoundError
from django_expo.registration.forms import TicketCheckoutForm
from django_expo.registration.models import Ticket, TicketType
from django_expo.settings import get_config

logger = logging.getLogger(__name__)

REFERENCE_BYTES = 16


@dataclass(frozen=True, slots=True)
class CheckoutRequest:
    """Cleaned checkout input."""

    ticket_type_id: int
    full_name: str
    email: str
    phone: str
    quantity: int


@dataclass(frozen=True, slots=True)
class CheckoutResult:
    """Outcome of a successful checkout.

    Attributes:
        reference: The batch reference shared by the new tickets.
        checkout_url: Chapa's hosted payment page for the buyer.
        total: Amount charged (unit price times quantity).
        tickets: The PENDING tickets that were created.
    """

    reference: str
    checkout_url: str
    total: Decimal
    tickets: list[Ticket] = field(default_factory=list)


def _generate_reference() -> str:
    """Generate a batch reference that no existing ticket uses."""
    while True:
        reference = secrets.token_hex(REFERENCE_BYTES)
        if not Ticket.objects.filter(reference=reference).exists():
            return reference


def _clean_checkout_input(
    *,
    ticket_type_id: object,
    full_name: object,
    email: object,
    phone: object,
    quantity: object,
) -> CheckoutRequest:
    """Validate raw checkout input with :class:`TicketCheckoutForm`.

    Raises:
        ValidationError: Keyed by field, one entry per offending field.
    """
    form = TicketCheckoutForm(
        data={
            "ticket_type_id": ticket_type_id,
            "full_name": full_name,
            "email": email,
            "phone": phone,
            "quantity": quantity,
        }
    )
    if not form.is_valid():
        raise ValidationError(form.errors.as_data())

    return CheckoutRequest(**form.cleaned_data)


def _return_url(reference: str) -> str:
    config = get_config()
    base = config.return_url or f"{config.site_url.rstrip('/')}{reverse('registration:verify')}"
    separator = "&" if "?" in base else "?"
    return f"{base}{separator}{urlencode({'status': 'redirect', 'reference': reference})}"


def _callback_url() -> str:
    return f"{get_config().site_url.rstrip('/')}{reverse('registration:chapa-webhook')}"


class CheckoutService:
    """Stateless service for checkout operations.

    Creates pending ticket batches, starts Chapa checkouts for them, and
    expires batches that were never paid.
    """

    @staticmethod
    def create_order(
        *,
        ticket_type_id: object,
        full_name: object,
        email: object,
        phone: object,
        quantity: object = 1,
        client: ChapaClient | None = None,
    ) -> CheckoutResult:
        """Create a PENDING ticket batch and start a hosted checkout for it.

        Args:
            ticket_type_id: Primary key of the ticket type to buy.
            full_name: Buyer's full name.
            email: Buyer's email; the tickets are sent here once paid.
            phone: Buyer's phone number.
            quantity: Number of tickets (default 1).
            client: Gateway client to use; a new ``ChapaClient`` by default.

        Returns:
            The batch reference and the checkout URL to redirect the buyer to.

        Raises:
            ValidationError: If any input is missing or malformed. Nothing is
                written.
            NotFoundError: If the ticket type does not exist or is inactive.
                Nothing is written.
            GatewayError: If Chapa could not start the checkout. The PENDING
                tickets are kept for manual reconciliation.
        """
        request = _clean_checkout_input(
            ticket_type_id=ticket_type_id,
            full_name=full_name,
            email=email,
            phone=phone,
            quantity=quantity,
        )

        ticket_type = TicketType.objects.filter(pk=request.ticket_type_id, is_active=True).first()
        if ticket_type is None:
            msg = f"Ticket type {request.ticket_type_id} not found"
            raise NotFoundError(msg)

        client = client or ChapaClient()
        tickets = CheckoutService.create_pending_batch(ticket_type, request)
        reference = tickets[0].reference
        total = ticket_type.price * request.quantity

        try:
            result = client.initialize(
                amount=total,
                currency=ticket_type.currency,
                payer_email=request.email,
                payer_name=request.full_name,
                phone=request.phone,
                redirect_url=_return_url(reference),
                callback_url=_callback_url(),
                tx_ref=reference,
                metadata={"reference": reference, "tickets": [t.pk for t in tickets]},
            )
        except GatewayError as exc:
            logger.error("Chapa initialize failed for reference %s: %s", reference, exc)
            raise GatewayError(str(exc), reference=reference) from exc

        if not result.ok:
            logger.error(
                "Chapa rejected checkout for reference %s: status=%s message=%s",
                reference,
                result.status,
                result.raw.get("message"),
            )
            msg = f"Chapa did not return a checkout URL for reference {reference}"
            raise GatewayError(msg, reference=reference)

        if result.provider_txn_id:
            Ticket.objects.filter(reference=reference).update(
                chapa_ref=result.provider_txn_id,
                updated_at=timezone.now(),
            )

        logger.info(
            "Created checkout %s: %d x %s, total %s %s",
            reference,
            request.quantity,
            ticket_type.name,
            total,
            ticket_type.currency,
        )
        return CheckoutResult(reference=reference, checkout_url=result.checkout_url, total=total, tickets=tickets)

    @staticmethod
    @transaction.atomic
    def create_pending_batch(ticket_type: TicketType, request: CheckoutRequest) -> list[Ticket]:
        """Insert ``request.quantity`` PENDING tickets sharing a new reference.

        The insert is all-or-nothing.

        Returns:
            The created tickets.
        """
        reference = _generate_reference()
        tickets = [
            Ticket.objects.create(
                ticket_type=ticket_type,
                full_name=request.full_name,
                email=request.email,
                phone=request.phone,
                status=Ticket.Status.PENDING,
                amount=ticket_type.price,
                currency=ticket_type.currency,
                reference=reference,
            )
            for _ in range(request.quantity)
        ]
        logger.debug("Inserted %d pending ticket(s) for reference %s", len(tickets), reference)
        return tickets

    @staticmethod
    @transaction.atomic
    def expire_stale_pending(*, now: datetime | None = None, minutes: int | None = None) -> int:
        """Mark PENDING batches older than the expiry window as ABANDONED.

        A batch is expired as a whole as soon as any of its tickets is past
        the cutoff, so batches are never split across states.

        Args:
            now: Reference time; defaults to ``timezone.now()``.
            minutes: Expiry window; defaults to
                ``DJANGO_EXPO['pending_order_expiry_minutes']``.

        Returns:
            The number of tickets marked as abandoned.
        """
        now = now or timezone.now()
        cutoff = now - timedelta(minutes=minutes or get_config().pending_order_expiry_minutes)
        stale_references = list(
            Ticket.objects.filter(status=Ticket.Status.PENDING, created_at__lte=cutoff)
            .order_by()
            .values_list("reference", flat=True)
            .distinct()
        )
        if not stale_references:
            return 0

        expired = Ticket.objects.filter(
            reference__in=stale_references,
            status=Ticket.Status.PENDING,
        ).update(status=Ticket.Status.ABANDONED, updated_at=now)
        logger.info("Marked %d pending ticket(s) in %d batch(es) as abandoned", expired, len(stale_references))
        return expired
