"""Utility helpers for RCON Courier."""
