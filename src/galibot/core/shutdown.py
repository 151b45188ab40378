"""Shutdown coordinator - turns termination signals into an orderly close."""

import asyncio
import logging
import signal

from galibot.core.lifecycle import LifecycleManager

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownCoordinator:
    """Waits for a termination request and terminates the lifecycle once.

    Repeated requests after the first are no-ops.
    """

    def __init__(self, lifecycle: LifecycleManager) -> None:
        """Initialize the coordinator.

        Args:
            lifecycle: Lifecycle manager to terminate
        """
        self._lifecycle = lifecycle
        self._requested = asyncio.Event()
        self._installed: list[signal.Signals] = []

    @property
    def shutdown_requested(self) -> bool:
        """Check if termination was requested."""
        return self._requested.is_set()

    def install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to request_shutdown() on the running loop."""
        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig.name)
                self._installed.append(sig)
            except (NotImplementedError, RuntimeError) as e:
                # Not supported on some platforms or outside the main thread
                logger.warning(f"Cannot install handler for {sig.name}: {e}")

    def remove_signal_handlers(self) -> None:
        """Remove handlers installed by install_signal_handlers()."""
        loop = asyncio.get_running_loop()
        for sig in self._installed:
            loop.remove_signal_handler(sig)
        self._installed.clear()

    def request_shutdown(self, source: str = "request") -> None:
        """Ask for termination; safe to call any number of times."""
        if self._requested.is_set():
            logger.debug(f"Shutdown already in progress, ignoring {source}")
            return
        logger.info(f"Shutdown requested ({source})")
        self._requested.set()

    async def wait(self) -> None:
        """Block until shutdown is requested, then terminate the lifecycle."""
        await self._requested.wait()
        await self._lifecycle.terminate()
