"""Ticket type, ticket, and notification outbox models for django-expo."""

from django.db import models

from django_expo.settings import get_config


def default_currency() -> str:
    """Return the configured default currency, ``DJANGO_EXPO['currency']``."""
    return get_config().currency


class TicketType(models.Model):
    """A purchasable ticket category for the expo.

    Reference data for checkout: the ``price`` is copied onto each ticket at
    purchase time, so later price edits never change existing tickets.
    """

    name = models.CharField(max_length=200)
    description = models.TextField(blank=True, default="")
    price = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default=default_currency)
    is_active = models.BooleanField(default=True)
    order = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["order", "name"]

    def __str__(self) -> str:
        return f"{self.name} ({self.price} {self.currency})"


class Ticket(models.Model):
    """A single admission ticket belonging to a purchase batch.

    Every ticket bought in one checkout shares the same ``reference``; the
    batch is created, paid, and abandoned as a unit. ``qr_token`` stays empty
    until the batch is confirmed as paid and never changes afterwards.
    """

    class Status(models.TextChoices):
        """Lifecycle states for a ticket."""

        PENDING = "PENDING", "Pending"
        PAID = "PAID", "Paid"
        ABANDONED = "ABANDONED", "Abandoned"

    ticket_type = models.ForeignKey(
        TicketType,
        on_delete=models.PROTECT,
        related_name="tickets",
    )
    full_name = models.CharField(max_length=200)
    email = models.EmailField()
    phone = models.CharField(max_length=50)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
    )
    amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Unit price at purchase time.",
    )
    currency = models.CharField(max_length=3, default=default_currency)
    reference = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Batch reference shared by all tickets bought together.",
    )
    chapa_ref = models.CharField(
        max_length=200,
        blank=True,
        default="",
        db_index=True,
        help_text="Transaction identifier assigned by Chapa.",
    )
    qr_token = models.CharField(
        max_length=64,
        unique=True,
        null=True,
        blank=True,
        help_text="Redeemable credential, assigned once the ticket is paid.",
    )
    paid_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "id"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="ticket_status_created_idx"),
        ]

    def __str__(self) -> str:
        return f"Ticket {self.pk} {self.reference} ({self.status})"


class TicketNotification(models.Model):
    """Outbox row for a ticket confirmation email.

    Rows are written in the same transaction that marks the ticket as paid,
    then delivered after commit. Failed deliveries are retried with
    exponential backoff until ``max_attempts`` is reached.
    """

    class Status(models.TextChoices):
        """Delivery states for a notification."""

        PENDING = "pending", "Pending"
        SENT = "sent", "Sent"
        FAILED = "failed", "Failed"

    ticket = models.OneToOneField(
        Ticket,
        on_delete=models.CASCADE,
        related_name="notification",
    )
    recipient = models.EmailField()
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
    )
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True, default="")
    next_attempt_at = models.DateTimeField(null=True, blank=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self) -> str:
        return f"Notification for ticket {self.ticket_id} ({self.status})"
