"""Core configuration for RCON Courier."""
