"""System and configuration endpoints for the RCON Courier API."""

from __future__ import annotations

from fastapi import APIRouter

from rcon_courier.api.v1.dependencies import RconClientDep
from rcon_courier.core.settings import settings

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/config")
async def get_public_config(client: RconClientDep) -> dict[str, object]:
    """Return a sanitized snapshot of runtime configuration.

    Excludes secrets and connection strings. Only the number of configured
    RCON credentials is reported, never their keys or values.
    """
    return {
        "app": {
            "name": settings.app_name,
            "version": settings.app_version,
            "debug": settings.debug,
        },
        "rcon": {
            "timeout_seconds": client.timeout_seconds,
            "max_packet_size": client.max_packet_size,
            "credentials_configured": client.credential_count,
        },
        "delivery": {
            "deadline_seconds": settings.delivery_deadline_seconds,
            "max_attempts": settings.delivery_max_attempts,
            "retry_backoff_seconds": settings.delivery_retry_backoff_seconds,
        },
        "queue_sweep": {
            "enabled": settings.queue_sweep_enabled,
            "interval_seconds": settings.queue_sweep_interval_seconds,
            "batch_size": settings.queue_sweep_batch_size,
        },
        "listener": {
            "token_required": bool(settings.listener_secret_token),
        },
    }
