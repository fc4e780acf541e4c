"""Ticket issuance: QR credentials and confirmation emails.

``TicketIssuer`` runs inside the transaction that marks a batch as paid. It
assigns each ticket its permanent QR token and writes one
``TicketNotification`` outbox row per ticket. ``NotificationDispatcher``
delivers those rows after commit and is re-run by the
``dispatch_ticket_notifications`` command to retry failures with backoff.
"""

import json
import logging
import secrets
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from urllib.parse import urlencode

from django.conf import settings
from django.core.mail import send_mail
from django.db import models, transaction
from django.utils import timezone

from django_expo.registration.models import Ticket, TicketNotification
from django_expo.settings import get_config

logger = logging.getLogger(__name__)

QR_TOKEN_BYTES = 12

_EMAIL_BODY = """Hello {name},

Your ticket has been confirmed. You can print or save your ticket using the link below:

{qr_url}

Please present the QR at the venue.

Regards,
{event_name} Team
"""


def generate_qr_token() -> str:
    """Return a fresh random QR token (24 hex characters)."""
    return secrets.token_hex(QR_TOKEN_BYTES)


def build_qr_url(token: str, size: int | None = None) -> str:
    """Build the URL of a QR image that encodes the ticket credential.

    The QR payload is the compact JSON object ``{"t": token}``.

    Args:
        token: The ticket's QR token.
        size: Edge length of the square image in pixels. Defaults to
            ``DJANGO_EXPO['qr_size']``.

    Returns:
        An absolute image URL.
    """
    config = get_config()
    size = size or config.qr_size
    payload = json.dumps({"t": token}, separators=(",", ":"))
    query = urlencode({"cht": "qr", "chs": f"{size}x{size}", "chl": payload, "choe": "UTF-8"})
    return f"{config.qr_image_url}?{query}"


@dataclass(frozen=True, slots=True)
class DispatchSummary:
    """Counts from one dispatch run."""

    sent: int = 0
    retrying: int = 0
    failed: int = 0


class TicketIssuer:
    """Stateless service that turns paid tickets into redeemable credentials."""

    @staticmethod
    def issue(tickets: Iterable[Ticket], *, now: datetime | None = None) -> list[Ticket]:
        """Assign QR tokens and queue confirmation emails for paid tickets.

        Must run inside the transaction that performed the PAID transition,
        so that the outbox rows commit or roll back together with it. Both
        steps are idempotent: an existing token is never replaced and each
        ticket has at most one notification.

        Args:
            tickets: Tickets that have just been marked as paid.
            now: Timestamp to record; defaults to ``timezone.now()``.

        Returns:
            The tickets with ``qr_token`` populated.
        """
        now = now or timezone.now()
        issued: list[Ticket] = []
        for ticket in tickets:
            if not ticket.qr_token:
                token = generate_qr_token()
                updated = Ticket.objects.filter(pk=ticket.pk, qr_token__isnull=True).update(
                    qr_token=token,
                    updated_at=now,
                )
                if updated:
                    ticket.qr_token = token
                else:
                    ticket.refresh_from_db(fields=["qr_token"])

            TicketNotification.objects.get_or_create(
                ticket=ticket,
                defaults={"recipient": ticket.email, "next_attempt_at": now},
            )
            issued.append(ticket)

        logger.info("Issued %d ticket(s) for reference %s", len(issued), issued[0].reference if issued else "-")
        return issued


class NotificationDispatcher:
    """Delivers pending ticket confirmation emails from the outbox."""

    @staticmethod
    def dispatch(notification_ids: Iterable[int] | None = None, *, now: datetime | None = None) -> DispatchSummary:
        """Send every due notification, optionally restricted to ``notification_ids``.

        A failure on one notification never blocks the others; it is logged,
        recorded on the row, and rescheduled.

        Returns:
            A :class:`DispatchSummary` with per-outcome counts.
        """
        now = now or timezone.now()
        due = TicketNotification.objects.filter(status=TicketNotification.Status.PENDING).filter(
            models.Q(next_attempt_at__isnull=True) | models.Q(next_attempt_at__lte=now)
        )
        if notification_ids is not None:
            due = due.filter(pk__in=list(notification_ids))

        sent = retrying = failed = 0
        for pk in list(due.values_list("pk", flat=True)):
            outcome = NotificationDispatcher._deliver(pk, now=now)
            if outcome == TicketNotification.Status.SENT:
                sent += 1
            elif outcome == TicketNotification.Status.FAILED:
                failed += 1
            elif outcome == TicketNotification.Status.PENDING:
                retrying += 1
        return DispatchSummary(sent=sent, retrying=retrying, failed=failed)

    @staticmethod
    def dispatch_for_tickets(tickets: Iterable[Ticket]) -> DispatchSummary:
        """Send the notifications belonging to ``tickets``."""
        ids = TicketNotification.objects.filter(ticket__in=[t.pk for t in tickets]).values_list("pk", flat=True)
        return NotificationDispatcher.dispatch(list(ids))

    @staticmethod
    @transaction.atomic
    def _deliver(pk: int, *, now: datetime) -> str | None:
        notification = (
            TicketNotification.objects.select_for_update().select_related("ticket", "ticket__ticket_type").get(pk=pk)
        )
        if notification.status != TicketNotification.Status.PENDING:
            return None

        config = get_config()
        ticket = notification.ticket
        notification.attempts += 1
        try:
            send_mail(
                subject=config.notifications.subject.format(event_name=config.event_name),
                message=_EMAIL_BODY.format(
                    name=ticket.full_name,
                    qr_url=build_qr_url(ticket.qr_token or ""),
                    event_name=config.event_name,
                ),
                from_email=config.notifications.from_email or settings.DEFAULT_FROM_EMAIL,
                recipient_list=[notification.recipient],
                fail_silently=False,
            )
        except Exception as exc:
            notification.last_error = str(exc)[:500]
            if notification.attempts >= config.notifications.max_attempts:
                notification.status = TicketNotification.Status.FAILED
                notification.next_attempt_at = None
                logger.error(
                    "Giving up on ticket email for ticket %s (reference %s) after %d attempts: %s",
                    ticket.pk,
                    ticket.reference,
                    notification.attempts,
                    exc,
                )
            else:
                delay = config.notifications.retry_backoff_seconds * 2 ** (notification.attempts - 1)
                notification.next_attempt_at = now + timedelta(seconds=delay)
                logger.warning(
                    "Ticket email for ticket %s (reference %s) failed, retrying in %ss: %s",
                    ticket.pk,
                    ticket.reference,
                    delay,
                    exc,
                )
        else:
            notification.status = TicketNotification.Status.SENT
            notification.sent_at = now
            notification.next_attempt_at = None
            notification.last_error = ""
            logger.info("Sent ticket email for ticket %s (reference %s)", ticket.pk, ticket.reference)

        notification.save(
            update_fields=["status", "attempts", "last_error", "next_attempt_at", "sent_at", "updated_at"],
        )
        return notification.status
