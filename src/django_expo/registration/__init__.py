"""Ticket checkout, Chapa payment reconciliation, and QR ticket issuance."""
