"""Recurring obligation and late fee ledger engine."""

__version__ = "1.0.0"
