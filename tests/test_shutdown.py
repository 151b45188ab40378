"""Tests for the shutdown coordinator."""

import asyncio
import os
import signal

import pytest

from galibot.core.lifecycle import LifecycleManager
from galibot.core.shutdown import ShutdownCoordinator
from galibot.core.state import ConnectionState
from tests.mocks import MemoryCredentialStore, MockTransport, make_credential, wait_for_state


class TestShutdownCoordinator:
    """Tests for ShutdownCoordinator class."""

    def test_request_is_idempotent(self, lifecycle: LifecycleManager) -> None:
        """Test repeated requests are accepted and ignored."""
        coordinator = ShutdownCoordinator(lifecycle)
        assert not coordinator.shutdown_requested

        coordinator.request_shutdown("SIGINT")
        coordinator.request_shutdown("SIGTERM")

        assert coordinator.shutdown_requested

    @pytest.mark.asyncio
    async def test_wait_terminates_lifecycle(
        self,
        lifecycle: LifecycleManager,
        mock_transport: MockTransport,
        memory_store: MemoryCredentialStore,
    ) -> None:
        """Test a request drives the running lifecycle to TERMINATED."""
        memory_store.credential = make_credential()
        mock_transport.script_session()
        coordinator = ShutdownCoordinator(lifecycle)
        run = asyncio.create_task(lifecycle.run())
        await wait_for_state(lifecycle, ConnectionState.CONNECTED)

        waiter = asyncio.create_task(coordinator.wait())
        await asyncio.sleep(0.01)
        assert not waiter.done()

        coordinator.request_shutdown()
        coordinator.request_shutdown()
        await asyncio.wait_for(waiter, 2.0)
        await asyncio.wait_for(run, 2.0)

        assert lifecycle.state is ConnectionState.TERMINATED
        assert mock_transport.disconnect_count == 1

    @pytest.mark.asyncio
    async def test_sigterm_requests_shutdown(self, lifecycle: LifecycleManager) -> None:
        """Test SIGTERM is routed to request_shutdown()."""
        coordinator = ShutdownCoordinator(lifecycle)
        coordinator.install_signal_handlers()
        try:
            os.kill(os.getpid(), signal.SIGTERM)
            for _ in range(100):
                if coordinator.shutdown_requested:
                    break
                await asyncio.sleep(0.01)
        finally:
            coordinator.remove_signal_handlers()

        assert coordinator.shutdown_requested
