"""Custody-backed order lifecycle and price notification service."""
