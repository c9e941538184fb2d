"""Booking conflict-resolution and credit-ledger engine for therapy sessions."""

__version__ = "0.1.0"
