"""Asyncio RCON transport.

One call is one TCP connection: authenticate, send a single command, read a
single response, close. Nothing here touches the database.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping

from rcon_courier.core.settings import settings
from rcon_courier.models import RconServer
from rcon_courier.services.credentials import get_credential_store
from rcon_courier.services.rcon_protocol import (
    SIZE_PREFIX_LENGTH,
    FrameError,
    Packet,
    auth_packet,
    command_packet,
    decode_payload,
    read_size,
)

# Configure logger for this module
logger = logging.getLogger(__name__)


class RconError(RuntimeError):
    """Base exception raised for RCON transport failures."""


class RconConnectionError(RconError):
    """Raised when the TCP connection cannot be opened."""


class RconAuthError(RconError):
    """Raised when the server rejects the authentication secret."""


class MissingCredentialError(RconError):
    """Raised when no secret is registered for a server."""


class RconTransportError(RconError):
    """Raised on I/O timeouts, resets and malformed frames mid-exchange."""

    def __init__(self, message: str, elapsed_ms: int) -> None:
        super().__init__(message)
        self.elapsed_ms = elapsed_ms


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


async def read_packet(
    reader: asyncio.StreamReader,
    *,
    timeout: float,
    max_packet_size: int,
) -> Packet:
    """Read exactly one frame from ``reader``.

    Raises:
        FrameError: If the peer closes the connection mid-frame or the size
            prefix is invalid.
        TimeoutError: If either read exceeds ``timeout``.
    """
    try:
        prefix = await asyncio.wait_for(reader.readexactly(SIZE_PREFIX_LENGTH), timeout)
        size = read_size(prefix, max_packet_size)
        payload = await asyncio.wait_for(reader.readexactly(size), timeout)
    except asyncio.IncompleteReadError as err:
        raise FrameError(
            f"Connection closed after {len(err.partial)} of {err.expected} bytes"
        ) from err
    return decode_payload(payload)


async def send_command(
    host: str,
    port: int,
    password: str,
    command: str,
    *,
    timeout: float,
    max_packet_size: int,
) -> str:
    """Authenticate against ``host:port`` and execute ``command``.

    Returns:
        The body of the command's response packet, uninterpreted.

    Raises:
        RconConnectionError: If the connection cannot be opened in time, or
            the host or port is not usable.
        RconAuthError: If the server answers the auth packet with id -1.
        RconTransportError: On any later timeout, reset or malformed frame.
    """
    started = time.monotonic()
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout
        )
    except (OSError, TimeoutError, ValueError, OverflowError) as err:
        # Bad host or port values on a server record surface here too.
        raise RconConnectionError(f"Could not connect to {host}:{port}: {err!r}") from err

    try:
        writer.write(auth_packet(password))
        await asyncio.wait_for(writer.drain(), timeout)
        auth_response = await read_packet(
            reader, timeout=timeout, max_packet_size=max_packet_size
        )
        if auth_response.is_auth_rejection:
            raise RconAuthError("RCON authentication failed")

        logger.debug("Executing RCON command on %s:%s: %s", host, port, command)
        writer.write(command_packet(command))
        await asyncio.wait_for(writer.drain(), timeout)
        response = await read_packet(reader, timeout=timeout, max_packet_size=max_packet_size)
        return response.body
    except TimeoutError as err:
        elapsed = _elapsed_ms(started)
        raise RconTransportError(f"RCON exchange timed out after {elapsed} ms", elapsed) from err
    except (FrameError, OSError, UnicodeEncodeError) as err:
        elapsed = _elapsed_ms(started)
        raise RconTransportError(f"RCON exchange failed: {err}", elapsed) from err
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as err:
            logger.debug("Ignoring error while closing RCON socket: %s", err)


class RconClient:
    """Executes commands on configured servers using an injected secret map.

    Secrets are looked up by server id first, then by server name.
    """

    def __init__(
        self,
        credentials: Mapping[str, str],
        *,
        timeout_seconds: float | None = None,
        max_packet_size: int | None = None,
    ) -> None:
        self._credentials = credentials
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.rcon_timeout_seconds
        )
        self.max_packet_size = (
            max_packet_size if max_packet_size is not None else settings.rcon_max_packet_size
        )

    def credential_for(self, server: RconServer) -> str | None:
        """Return the secret registered for ``server``, if any."""
        return self._credentials.get(server.id) or self._credentials.get(server.name) or None

    def has_credential(self, server: RconServer) -> bool:
        return self.credential_for(server) is not None

    @property
    def credential_count(self) -> int:
        return len(self._credentials)

    async def execute(self, server: RconServer, command: str) -> str:
        """Run ``command`` on ``server`` and return the response text."""
        password = self.credential_for(server)
        if password is None:
            raise MissingCredentialError(f"No RCON password configured for {server.name}")
        return await send_command(
            server.host,
            server.port,
            password,
            command,
            timeout=self.timeout_seconds,
            max_packet_size=self.max_packet_size,
        )


class _RconClientSingleton:
    """Singleton wrapper for RconClient."""

    _instance: RconClient | None = None

    @classmethod
    def get_instance(cls) -> RconClient:
        """Get or create the process-wide RconClient."""
        if cls._instance is None:
            cls._instance = RconClient(get_credential_store())
        return cls._instance


def get_rcon_client() -> RconClient:
    """Return a singleton RCON client bound to the configured secrets."""
    return _RconClientSingleton.get_instance()
