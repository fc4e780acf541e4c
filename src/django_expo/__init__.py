"""Ticket sales and payment reconciliation for expo registration sites."""

__version__ = "0.1.0"
