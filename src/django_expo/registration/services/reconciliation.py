"""Payment reconciliation between local ticket batches and Chapa.

Webhook deliveries, manual verify requests, the ``verify_ticket_payment``
command, and the admin action all funnel into
:meth:`ReconciliationService.confirm_payment`. The pushed status is never
trusted: every call asks Chapa for the authoritative transaction status
first, and only a verified payment changes ticket state.
"""

import logging
from dataclasses import dataclass, field

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from django_expo.registration.chapa_client import ChapaClient, VerifyResult
from django_expo.registration.exceptions import NotFoundError, VerificationError
from django_expo.registration.models import Ticket
from django_expo.registration.services.issuance import NotificationDispatcher, TicketIssuer
from django_expo.registration.signals import tickets_paid

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConfirmationResult:
    """Outcome of a reconciliation attempt.

    Attributes:
        reference: The resolved batch reference.
        paid: Whether Chapa reports the payment as completed.
        newly_paid: How many tickets this call moved to PAID. Zero on a
            repeated confirmation.
        tickets: The batch after reconciliation.
        verification: The verification result returned by Chapa.
    """

    reference: str
    paid: bool
    newly_paid: int = 0
    tickets: list[Ticket] = field(default_factory=list)
    verification: VerifyResult | None = None


def resolve_reference(reference: str) -> str:
    """Map a local batch reference or a Chapa transaction id to a batch reference.

    Args:
        reference: Either our batch reference or Chapa's own reference.

    Returns:
        The local batch reference.

    Raises:
        ValidationError: If ``reference`` is blank.
        NotFoundError: If no ticket batch matches either key.
    """
    reference = (reference or "").strip()
    if not reference:
        raise ValidationError("reference required")

    if Ticket.objects.filter(reference=reference).exists():
        return reference

    batch_reference = (
        Ticket.objects.filter(chapa_ref=reference).order_by("id").values_list("reference", flat=True).first()
    )
    if batch_reference:
        return batch_reference

    msg = f"No tickets found for reference {reference}"
    raise NotFoundError(msg, reference=reference)


class ReconciliationService:
    """Stateless service that confirms ticket payments against Chapa."""

    @staticmethod
    def confirm_payment(
        reference: str,
        *,
        client: ChapaClient | None = None,
        source: str = "manual",
    ) -> ConfirmationResult:
        """Verify a batch with Chapa and mark it paid if the payment went through.

        Safe to call any number of times, concurrently included: only the call
        that actually transitions tickets issues QR tokens and queues emails.

        Args:
            reference: The batch reference or Chapa's transaction reference.
            client: Gateway client to use; a new ``ChapaClient`` by default.
            source: Label for log lines (``"webhook"``, ``"manual"``, ...).

        Returns:
            A :class:`ConfirmationResult`. ``paid=False`` is a normal outcome
            (e.g. an abandoned checkout) and leaves the batch untouched.

        Raises:
            ValidationError: If ``reference`` is blank.
            NotFoundError: If the reference matches no batch.
            VerificationError: If the verification call failed. The caller
                should retry later; this does not mean the payment failed.
        """
        batch_reference = resolve_reference(reference)
        client = client or ChapaClient()

        try:
            verification = client.verify(batch_reference)
        except VerificationError as exc:
            logger.error("Chapa verify failed for reference %s (%s): %s", batch_reference, source, exc)
            raise VerificationError(str(exc), reference=batch_reference) from exc

        if not verification.paid:
            logger.warning(
                "Payment not successful for reference %s (%s): status=%s",
                batch_reference,
                source,
                verification.status or "unknown",
            )
            return ConfirmationResult(
                reference=batch_reference,
                paid=False,
                tickets=list(Ticket.objects.filter(reference=batch_reference).order_by("id")),
                verification=verification,
            )

        newly_paid = ReconciliationService.mark_batch_paid(batch_reference, verification)
        if newly_paid:
            transaction.on_commit(lambda: NotificationDispatcher.dispatch_for_tickets(newly_paid))
            logger.info(
                "Reference %s marked PAID via %s: %d ticket(s), chapa_ref %s",
                batch_reference,
                source,
                len(newly_paid),
                verification.provider_txn_id,
            )
        else:
            logger.info("Reference %s already PAID, nothing to do (%s)", batch_reference, source)

        return ConfirmationResult(
            reference=batch_reference,
            paid=True,
            newly_paid=len(newly_paid),
            tickets=list(Ticket.objects.filter(reference=batch_reference).order_by("id")),
            verification=verification,
        )

    @staticmethod
    @transaction.atomic
    def mark_batch_paid(reference: str, verification: VerifyResult) -> list[Ticket]:
        """Transition every unpaid ticket of a batch to PAID and issue them.

        Locks the batch, then updates only rows that are not already PAID. A
        concurrent or repeated call sees zero affected rows and returns an
        empty list without issuing anything.

        Returns:
            The tickets that this call moved to PAID.
        """
        now = timezone.now()
        batch = list(Ticket.objects.select_for_update().filter(reference=reference).order_by("id"))
        unpaid_ids = [ticket.pk for ticket in batch if ticket.status != Ticket.Status.PAID]
        if not unpaid_ids:
            return []

        updated = (
            Ticket.objects.filter(pk__in=unpaid_ids)
            .exclude(status=Ticket.Status.PAID)
            .update(
                status=Ticket.Status.PAID,
                chapa_ref=verification.provider_txn_id or reference,
                paid_at=now,
                updated_at=now,
            )
        )
        if not updated:
            return []

        newly_paid = list(Ticket.objects.filter(pk__in=unpaid_ids).order_by("id"))
        TicketIssuer.issue(newly_paid, now=now)
        tickets_paid.send(sender=Ticket, reference=reference, tickets=newly_paid)
        return newly_paid
