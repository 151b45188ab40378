"""Credential store adapter - narrow translation layer over the backing store."""

import asyncio
import logging
from urllib.parse import quote

from galibot.config import DatabaseConfig
from galibot.errors import ConfigError, StoreUnavailable
from galibot.interfaces.credential_store import CredentialStore
from galibot.interfaces.events import DeviceCredential

logger = logging.getLogger(__name__)


def resolve_connection_string(config: DatabaseConfig) -> str:
    """Build the PostgreSQL connection string from database settings.

    Args:
        config: Database configuration (usually from DB_* environment variables)

    Returns:
        A postgres:// DSN

    Raises:
        ConfigError: If host, database name or user is missing
    """
    missing = [name for name in ("host", "name", "user") if not getattr(config, name)]
    if missing:
        raise ConfigError(f"Database configuration missing: {', '.join(missing)}")
    try:
        port = int(config.port)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid database port: {config.port!r}") from e
    if not 0 < port < 65536:
        raise ConfigError(f"Invalid database port: {port}")

    user = quote(config.user, safe="")
    password = quote(config.password or "", safe="")
    credentials = f"{user}:{password}" if password else user
    return (
        f"postgres://{credentials}@{config.host}:{port}/"
        f"{quote(config.name, safe='')}?sslmode={config.sslmode}"
    )


class CredentialAdapter:
    """Reads and writes the device credential through a CredentialStore.

    Calls are serialized so a write is never visible half-done to a
    concurrent read. Socket-level failures are reported as StoreUnavailable.
    """

    def __init__(self, store: CredentialStore) -> None:
        """Initialize the adapter.

        Args:
            store: Backing store holding the credential row
        """
        self._store = store
        self._lock = asyncio.Lock()

    async def load_credential(self) -> DeviceCredential | None:
        """Read the stored credential.

        Returns:
            The credential, or None if the device has never been paired

        Raises:
            StoreUnavailable: If the backing store cannot be reached
        """
        async with self._lock:
            try:
                credential = await self._store.get()
            except OSError as e:
                raise StoreUnavailable(f"Credential store unreachable: {e}") from e

        if credential is None:
            logger.debug("No stored credential")
        else:
            logger.debug(f"Loaded credential for {credential.identity}")
        return credential

    async def save_credential(self, credential: DeviceCredential) -> None:
        """Store the credential, replacing any previous one.

        Raises:
            StoreUnavailable: If the backing store cannot be reached
        """
        async with self._lock:
            try:
                await self._store.put(credential)
            except OSError as e:
                raise StoreUnavailable(f"Credential store unreachable: {e}") from e
        logger.info(f"Stored credential for {credential.identity}")

    async def discard_credential(self) -> None:
        """Remove the stored credential.

        Raises:
            StoreUnavailable: If the backing store cannot be reached
        """
        async with self._lock:
            try:
                await self._store.delete()
            except OSError as e:
                raise StoreUnavailable(f"Credential store unreachable: {e}") from e
        logger.info("Discarded stored credential")
