"""Reliable RCON command delivery for paid game-store orders."""

__version__ = "0.1.0"
