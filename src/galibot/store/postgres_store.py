"""PostgreSQL credential store using asyncpg."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import asyncpg

from galibot.errors import StoreUnavailable
from galibot.interfaces.credential_store import CredentialStore
from galibot.interfaces.events import DeviceCredential, DeviceIdentity

logger = logging.getLogger(__name__)

# Errors meaning the database cannot be reached right now
_UNAVAILABLE_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.PostgresConnectionError,
    asyncpg.CannotConnectNowError,
    asyncpg.TooManyConnectionsError,
    asyncpg.InterfaceError,
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS device_credentials (
    device_key TEXT PRIMARY KEY,
    device_id TEXT NOT NULL,
    payload BYTEA NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

SELECT_SQL = "SELECT device_id, payload FROM device_credentials WHERE device_key = $1"

UPSERT_SQL = """
INSERT INTO device_credentials (device_key, device_id, payload)
VALUES ($1, $2, $3)
ON CONFLICT (device_key)
DO UPDATE SET
  device_id = EXCLUDED.device_id,
  payload = EXCLUDED.payload,
  updated_at = now()
"""

DELETE_SQL = "DELETE FROM device_credentials WHERE device_key = $1"

PoolFactory = Callable[..., Awaitable[Any]]


class PostgresCredentialStore(CredentialStore):
    """Stores one device credential row in PostgreSQL.

    The row is keyed by ``device_key`` so several bots can share a database.
    Writes are a single upsert inside a transaction, so readers see either
    the old or the new credential, never a mix.
    """

    def __init__(
        self,
        dsn: str,
        device_key: str = "default",
        min_size: int = 1,
        max_size: int = 2,
        command_timeout: float = 10.0,
        pool_factory: PoolFactory | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            dsn: PostgreSQL connection string
            device_key: Row key for this bot's credential
            min_size: Minimum pool connections
            max_size: Maximum pool connections
            command_timeout: Per-statement timeout (seconds)
            pool_factory: Pool constructor (asyncpg.create_pool if not provided)
        """
        self._dsn = dsn
        self._device_key = device_key
        self._min_size = min_size
        self._max_size = max_size
        self._command_timeout = command_timeout
        self._pool_factory = pool_factory or asyncpg.create_pool
        self._pool: Any = None

    async def open(self) -> None:
        """Create the connection pool and the credential table.

        Raises:
            StoreUnavailable: If the database cannot be reached
        """
        if self._pool is not None:
            return

        logger.info("Opening credential store connection pool")
        try:
            self._pool = await self._pool_factory(
                dsn=self._dsn,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=self._command_timeout,
                server_settings={"application_name": "galibot"},
            )
            async with self._pool.acquire() as conn:
                await conn.execute(SCHEMA_SQL)
        except _UNAVAILABLE_ERRORS as e:
            await self._discard_pool()
            raise StoreUnavailable(f"Cannot open credential store: {e}") from e

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool is None:
            return
        logger.info("Closing credential store connection pool")
        await self._pool.close()
        self._pool = None

    async def get(self) -> DeviceCredential | None:
        """Read this bot's credential row."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(SELECT_SQL, self._device_key)
        except _UNAVAILABLE_ERRORS as e:
            raise StoreUnavailable(f"Credential read failed: {e}") from e

        if row is None:
            return None
        return DeviceCredential(
            identity=DeviceIdentity(row["device_id"]), payload=bytes(row["payload"])
        )

    async def put(self, credential: DeviceCredential) -> None:
        """Insert or atomically replace this bot's credential row."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(
                        UPSERT_SQL,
                        self._device_key,
                        credential.identity.device_id,
                        credential.payload,
                    )
        except _UNAVAILABLE_ERRORS as e:
            raise StoreUnavailable(f"Credential write failed: {e}") from e

    async def delete(self) -> None:
        """Delete this bot's credential row."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute(DELETE_SQL, self._device_key)
        except _UNAVAILABLE_ERRORS as e:
            raise StoreUnavailable(f"Credential delete failed: {e}") from e

    def _require_pool(self) -> Any:
        if self._pool is None:
            raise StoreUnavailable("Credential store is not open")
        return self._pool

    async def _discard_pool(self) -> None:
        pool, self._pool = self._pool, None
        if pool is None:
            return
        try:
            await pool.close()
        except Exception as e:
            logger.debug(f"Error closing failed pool: {e}")
