"""Main Bot orchestrator."""

import asyncio
import logging

from galibot.config import Config
from galibot.core.backoff import BackoffPolicy
from galibot.core.credential_adapter import CredentialAdapter, resolve_connection_string
from galibot.core.dispatcher import EventDispatcher
from galibot.core.handler_registry import HandlerRegistry
from galibot.core.lifecycle import LifecycleManager
from galibot.core.pairing import ArtifactRenderer
from galibot.core.shutdown import ShutdownCoordinator
from galibot.core.state import ConnectionState
from galibot.errors import ConfigError, StoreUnavailable
from galibot.handlers.builtin import register_builtin_handlers
from galibot.interfaces.credential_store import CredentialStore
from galibot.interfaces.transport import Transport
from galibot.store.postgres_store import PostgresCredentialStore
from galibot.transport.http_bridge import HttpBridgeTransport

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_STORE_UNAVAILABLE = 1
EXIT_CONFIG_ERROR = 2


class Bot:
    """Wires the credential store, transport, lifecycle and dispatcher together.

    The Bot coordinates:
    - Credential store for the paired device session
    - Transport to the messaging network
    - Lifecycle manager for pairing, connecting and reconnecting
    - Event dispatcher routing events to registered handlers
    - Shutdown coordinator reacting to SIGINT/SIGTERM
    """

    def __init__(
        self,
        config: Config | None = None,
        transport: Transport | None = None,
        store: CredentialStore | None = None,
        pairing_renderer: ArtifactRenderer | None = None,
    ) -> None:
        """Initialize the bot.

        Args:
            config: Bot configuration (default if not provided)
            transport: Custom transport (creates HttpBridgeTransport if not provided)
            store: Custom credential store (creates PostgresCredentialStore if not provided)
            pairing_renderer: Operator output for pairing codes (console if not provided)

        Raises:
            ConfigError: If the database settings cannot form a connection string
                or the backoff settings are invalid
        """
        self._config = config or Config.default()

        self._setup_transport(transport)
        self._setup_store(store)
        self._registry = HandlerRegistry()
        register_builtin_handlers(self._registry, reply_prefix=self._config.handlers.reply_prefix)
        self._dispatcher = EventDispatcher(self._registry, self._transport)

        lifecycle_cfg = self._config.lifecycle
        self._lifecycle = LifecycleManager(
            transport=self._transport,
            credentials=CredentialAdapter(self._store),
            dispatcher=self._dispatcher,
            backoff_policy=self._backoff_policy(),
            connect_timeout=lifecycle_cfg.connect_timeout_seconds,
            pairing_timeout=lifecycle_cfg.pairing_timeout_seconds,
            pairing_retry_delay=lifecycle_cfg.pairing_retry_delay_seconds,
            pairing_renderer=pairing_renderer,
        )
        self._shutdown = ShutdownCoordinator(self._lifecycle)

    def _backoff_policy(self) -> BackoffPolicy:
        lifecycle_cfg = self._config.lifecycle
        try:
            return BackoffPolicy(
                base_delay=lifecycle_cfg.backoff_base_seconds,
                max_delay=lifecycle_cfg.backoff_max_seconds,
                factor=lifecycle_cfg.backoff_factor,
                jitter=lifecycle_cfg.backoff_jitter,
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid backoff settings: {e}") from e

    def _setup_transport(self, transport: Transport | None) -> None:
        if transport is not None:
            self._transport = transport
            return
        transport_cfg = self._config.transport
        self._transport = HttpBridgeTransport(
            base_url=transport_cfg.base_url,
            api_token=transport_cfg.api_token,
            request_timeout=transport_cfg.request_timeout,
            poll_timeout=transport_cfg.poll_timeout,
        )

    def _setup_store(self, store: CredentialStore | None) -> None:
        if store is not None:
            self._store = store
            return
        db_cfg = self._config.database
        self._store = PostgresCredentialStore(
            dsn=resolve_connection_string(db_cfg),
            device_key=db_cfg.device_key,
            min_size=db_cfg.pool_min_size,
            max_size=db_cfg.pool_max_size,
            command_timeout=db_cfg.command_timeout,
        )

    @property
    def registry(self) -> HandlerRegistry:
        """Get the handler registry."""
        return self._registry

    @property
    def lifecycle(self) -> LifecycleManager:
        """Get the lifecycle manager."""
        return self._lifecycle

    @property
    def shutdown(self) -> ShutdownCoordinator:
        """Get the shutdown coordinator."""
        return self._shutdown

    @property
    def state(self) -> ConnectionState:
        """Get the current connection state."""
        return self._lifecycle.state

    async def run(self, install_signal_handlers: bool = True) -> int:
        """Run until shut down.

        Args:
            install_signal_handlers: Route SIGINT/SIGTERM to shutdown

        Returns:
            Process exit status: 0 on graceful termination, non-zero when the
            credential store is unavailable at startup
        """
        logger.info("Starting galibot...")
        try:
            await self._store.open()
        except StoreUnavailable as e:
            logger.critical(f"Credential store unavailable at startup: {e}")
            return EXIT_STORE_UNAVAILABLE

        if install_signal_handlers:
            self._shutdown.install_signal_handlers()

        lifecycle_task = asyncio.create_task(self._lifecycle.run(), name="lifecycle")
        shutdown_task = asyncio.create_task(self._shutdown.wait(), name="shutdown")
        try:
            await asyncio.wait(
                {lifecycle_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED
            )
            if lifecycle_task.done() and not lifecycle_task.cancelled():
                error = lifecycle_task.exception()
                if error is not None:
                    return self._startup_failure(error)

            # Lifecycle only returns on its own after termination has begun
            self._shutdown.request_shutdown("lifecycle finished")
            await shutdown_task
            await lifecycle_task
            logger.info("galibot stopped")
            return EXIT_OK
        finally:
            if not shutdown_task.done():
                shutdown_task.cancel()
            if install_signal_handlers:
                self._shutdown.remove_signal_handlers()
            await self._close_resources()

    def _startup_failure(self, error: BaseException) -> int:
        if isinstance(error, StoreUnavailable):
            logger.critical(f"Credential store unavailable at startup: {error}")
            return EXIT_STORE_UNAVAILABLE
        if isinstance(error, ConfigError):
            logger.critical(f"Configuration error: {error}")
            return EXIT_CONFIG_ERROR
        raise error

    async def _close_resources(self) -> None:
        if not self._lifecycle.is_terminating:
            await self._lifecycle.terminate("bot stopped")
        try:
            await self._store.close()
        except Exception as e:
            logger.warning(f"Error closing credential store: {e}")
        aclose = getattr(self._transport, "aclose", None)
        if aclose is not None:
            try:
                await aclose()
            except Exception as e:
                logger.warning(f"Error closing transport: {e}")
