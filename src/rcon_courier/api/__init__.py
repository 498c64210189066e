"""HTTP API for RCON Courier."""
