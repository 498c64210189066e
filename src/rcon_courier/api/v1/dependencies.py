"""Shared API dependencies for the delivery and presence endpoints."""

import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from rcon_courier.core.settings import settings
from rcon_courier.db.session import get_db
from rcon_courier.services.rcon_client import RconClient, get_rcon_client

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_rcon_client_dep() -> RconClient:
    """Return the shared RCON client."""
    return get_rcon_client()


RconClientDep = Annotated[RconClient, Depends(get_rcon_client_dep)]


def verify_listener_token(
    x_listener_token: Annotated[str | None, Header()] = None,
) -> None:
    """Reject presence events that do not carry the shared listener token.

    When no token is configured the check is disabled, matching deployments
    where the listener endpoint is only reachable from the game network.

    Raises:
        HTTPException: If a token is configured and the header does not match
    """
    expected = settings.listener_secret_token
    if not expected:
        return
    if x_listener_token is None or not secrets.compare_digest(
        x_listener_token.encode(), expected.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


ListenerTokenDep = Depends(verify_listener_token)
