"""Inventory adjustments triggered by returns."""
