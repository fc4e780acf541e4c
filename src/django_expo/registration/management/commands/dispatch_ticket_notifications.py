"""Management command to deliver queued ticket confirmation emails.

Meant to run from cron. Sends every notification whose retry time has come
and reschedules failures with exponential backoff.

Usage::

    manage.py dispatch_ticket_notifications
"""

from django.core.management.base import BaseCommand

from django_expo.registration.services.issuance import NotificationDispatcher


class Command(BaseCommand):
    """Send due ticket confirmation emails from the outbox."""

    help = "Send due ticket confirmation emails and reschedule failures"

    def handle(self, *args: object, **options: object) -> None:  # noqa: ARG002
        """Dispatch the outbox and print a summary."""
        summary = NotificationDispatcher.dispatch()
        self.stdout.write(
            self.style.SUCCESS(
                f"Sent {summary.sent} notification(s); {summary.retrying} rescheduled, {summary.failed} failed."
            )
        )
