"""Carrier label gateway."""
