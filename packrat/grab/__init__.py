"""Grab and import of accepted releases."""
