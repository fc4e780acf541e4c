"""Management command to reconcile a ticket batch with Chapa by hand.

Usage::

    manage.py verify_ticket_payment 3f9c0d2a...
"""

import argparse

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError

from django_expo.registration.exceptions import TicketingError
from django_expo.registration.services.reconciliation import ReconciliationService


class Command(BaseCommand):
    """Verify one or more references with Chapa and mark paid batches."""

    help = "Verify ticket batch references with Chapa and mark paid batches"

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        """Register command-line arguments.

        Args:
            parser: The argument parser to add arguments to.
        """
        parser.add_argument("references", nargs="+", help="Batch or Chapa references to verify.")

    def handle(self, *args: object, **options: object) -> None:  # noqa: ARG002
        """Reconcile each reference and report the outcome."""
        failures = 0
        for reference in options["references"]:
            try:
                result = ReconciliationService.confirm_payment(reference, source="command")
            except (TicketingError, ValidationError) as exc:
                failures += 1
                self.stderr.write(self.style.ERROR(f"{reference}: {exc}"))
                continue

            if not result.paid:
                self.stdout.write(self.style.WARNING(f"{result.reference}: payment not successful"))
            else:
                self.stdout.write(
                    self.style.SUCCESS(f"{result.reference}: paid, {result.newly_paid} ticket(s) newly confirmed")
                )

        if failures:
            msg = f"{failures} reference(s) could not be verified"
            raise CommandError(msg)
