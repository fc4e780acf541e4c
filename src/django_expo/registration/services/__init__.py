"""Stateless services for the ticket purchase workflow."""
