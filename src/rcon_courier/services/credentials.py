"""Out-of-band RCON secret store."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Mapping
from types import MappingProxyType

from rcon_courier.core.settings import settings

# Configure logger for this module
logger = logging.getLogger(__name__)


class CredentialStore(Mapping[str, str]):
    """Read-only map from server id or server name to its RCON password."""

    def __init__(self, secrets: Mapping[str, str] | None = None) -> None:
        self._secrets = MappingProxyType(
            {str(key): str(value) for key, value in (secrets or {}).items() if value}
        )

    def __getitem__(self, key: str) -> str:
        return self._secrets[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._secrets)

    def __len__(self) -> int:
        return len(self._secrets)

    def __repr__(self) -> str:
        # Never leak secret values into logs or tracebacks.
        return f"CredentialStore(keys={sorted(self._secrets)!r})"


def load_credentials(raw: str | None) -> CredentialStore:
    """Parse a JSON object of secrets, tolerating malformed input.

    A malformed value yields an empty store so that every server is treated as
    missing its credential instead of crashing the process.
    """
    if not raw:
        return CredentialStore()
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Failed to parse RCON_PASSWORDS, expected a JSON object")
        return CredentialStore()
    if not isinstance(parsed, dict):
        logger.warning("RCON_PASSWORDS must be a JSON object, got %s", type(parsed).__name__)
        return CredentialStore()
    return CredentialStore(parsed)


def get_credential_store() -> CredentialStore:
    """Build the credential store from the process settings."""
    return load_credentials(settings.rcon_passwords)
