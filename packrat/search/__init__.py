"""Shared search value types."""
