"""Django admin configuration for the registration app."""

from django.contrib import admin, messages
from django.db.models import QuerySet
from django.http import HttpRequest

from django_expo.registration.exceptions import TicketingError
from django_expo.registration.models import Ticket, TicketNotification, TicketType
from django_expo.registration.services.issuance import NotificationDispatcher
from django_expo.registration.services.reconciliation import ReconciliationService


@admin.register(TicketType)
class TicketTypeAdmin(admin.ModelAdmin):
    """Admin interface for managing ticket types."""

    list_display = ("name", "price", "currency", "is_active", "order")
    list_filter = ("is_active", "currency")
    search_fields = ("name",)


@admin.register(Ticket)
class TicketAdmin(admin.ModelAdmin):
    """Admin interface for inspecting tickets and recovering missed payments.

    Payment state is read-only: it only changes through reconciliation with
    Chapa, available here as the "Verify payment with Chapa" action.
    """

    list_display = ("reference", "full_name", "email", "ticket_type", "status", "amount", "created_at")
    list_filter = ("status", "ticket_type")
    search_fields = ("reference", "chapa_ref", "email", "full_name", "qr_token")
    readonly_fields = ("status", "amount", "currency", "reference", "chapa_ref", "qr_token", "paid_at")
    actions = ("verify_payment",)

    @admin.action(description="Verify payment with Chapa")
    def verify_payment(self, request: HttpRequest, queryset: QuerySet[Ticket]) -> None:
        """Re-run reconciliation for every batch in the selection."""
        references = sorted(set(queryset.values_list("reference", flat=True)))
        for reference in references:
            try:
                result = ReconciliationService.confirm_payment(reference, source="admin")
            except TicketingError as exc:
                self.message_user(request, f"{reference}: {exc}", level=messages.ERROR)
                continue
            if not result.paid:
                self.message_user(request, f"{reference}: payment not successful", level=messages.WARNING)
            else:
                self.message_user(request, f"{reference}: paid ({result.newly_paid} newly confirmed)")


@admin.register(TicketNotification)
class TicketNotificationAdmin(admin.ModelAdmin):
    """Admin interface for the ticket email outbox."""

    list_display = ("ticket", "recipient", "status", "attempts", "next_attempt_at", "sent_at")
    list_filter = ("status",)
    search_fields = ("recipient", "ticket__reference")
    readonly_fields = ("ticket", "recipient", "attempts", "last_error", "sent_at", "created_at")
    actions = ("retry_now",)

    @admin.action(description="Retry delivery now")
    def retry_now(self, request: HttpRequest, queryset: QuerySet[TicketNotification]) -> None:
        """Reset the selected notifications to pending and dispatch them."""
        ids = list(queryset.exclude(status=TicketNotification.Status.SENT).values_list("pk", flat=True))
        TicketNotification.objects.filter(pk__in=ids).update(
            status=TicketNotification.Status.PENDING,
            next_attempt_at=None,
            attempts=0,
        )
        summary = NotificationDispatcher.dispatch(ids)
        self.message_user(request, f"Sent {summary.sent}, retrying {summary.retrying}, failed {summary.failed}.")
