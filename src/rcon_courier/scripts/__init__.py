"""Operational scripts for RCON Courier."""
