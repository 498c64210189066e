"""Delivery engine services."""
