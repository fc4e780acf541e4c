"""Management command to abandon ticket batches that were never paid.

Usage::

    # Abandon batches older than the configured window
    manage.py expire_pending_tickets

    # Use a custom window
    manage.py expire_pending_tickets --minutes 120
"""

import argparse

from django.core.management.base import BaseCommand, CommandError

from django_expo.registration.services.checkout import CheckoutService


class Command(BaseCommand):
    """Mark stale PENDING ticket batches as ABANDONED."""

    help = "Mark PENDING ticket batches older than the expiry window as ABANDONED"

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        """Register command-line arguments.

        Args:
            parser: The argument parser to add arguments to.
        """
        parser.add_argument(
            "--minutes",
            type=int,
            default=None,
            help="Expiry window in minutes (defaults to DJANGO_EXPO['pending_order_expiry_minutes']).",
        )

    def handle(self, *args: object, **options: object) -> None:  # noqa: ARG002
        """Run the expiry pass and report how many tickets were abandoned."""
        minutes = options["minutes"]
        if minutes is not None and minutes <= 0:
            msg = "--minutes must be a positive integer"
            raise CommandError(msg)

        expired = CheckoutService.expire_stale_pending(minutes=minutes)
        self.stdout.write(self.style.SUCCESS(f"Abandoned {expired} pending ticket(s)."))
