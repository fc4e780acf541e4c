"""Custom signals for the registration app.

Signals:
    tickets_paid: Sent after a ticket batch transitions to PAID.
        Sender: The ``Ticket`` class.
        Kwargs:
            reference: The batch reference.
            tickets: List of the ``Ticket`` instances that were just paid.
"""

from django.dispatch import Signal

tickets_paid = Signal()
