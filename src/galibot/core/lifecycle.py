"""Connection lifecycle manager - pairing, connect, and reconnect with backoff."""

import asyncio
import logging

from galibot.core.backoff import Backoff, BackoffPolicy
from galibot.core.credential_adapter import CredentialAdapter
from galibot.core.dispatcher import EpochEnd, EventDispatcher
from galibot.core.pairing import ArtifactRenderer, PairingHandshake
from galibot.core.state import ConnectionState, ConnectionStateMachine
from galibot.errors import ConnectError, CredentialRevoked, StoreUnavailable
from galibot.interfaces.events import DeviceCredential
from galibot.interfaces.transport import Transport, TransportSession

logger = logging.getLogger(__name__)


class LifecycleManager:
    """Owns the connection state machine and the live transport session.

    States:
        UNPAIRED -> AWAITING_PAIRING -> CONNECTING -> CONNECTED
        CONNECTED -> DISCONNECTED -> RECONNECTING -> CONNECTING
        any -> TERMINATED (only through terminate(); absorbing)

    The live session is lent to the event dispatcher for one epoch and
    returned when the epoch ends. The stored credential is only written here,
    at pairing confirmation, credential rotation and revocation.
    """

    def __init__(
        self,
        transport: Transport,
        credentials: CredentialAdapter,
        dispatcher: EventDispatcher,
        backoff_policy: BackoffPolicy | None = None,
        connect_timeout: float = 30.0,
        pairing_timeout: float = 180.0,
        pairing_retry_delay: float = 5.0,
        pairing_renderer: ArtifactRenderer | None = None,
        state_machine: ConnectionStateMachine | None = None,
    ) -> None:
        """Initialize the lifecycle manager.

        Args:
            transport: Transport to the messaging network
            credentials: Adapter over the credential store
            dispatcher: Event dispatcher receiving each epoch's session
            backoff_policy: Delay policy for reconnects and store retries
            connect_timeout: Seconds allowed for each connect attempt
            pairing_timeout: Seconds to wait for the operator to confirm pairing
            pairing_retry_delay: Seconds to wait before retrying a failed pairing
            pairing_renderer: Operator output for pairing codes (console if not provided)
            state_machine: State machine to drive (new one if not provided)
        """
        self._transport = transport
        self._credentials = credentials
        self._dispatcher = dispatcher
        self._pairing = PairingHandshake(
            transport,
            persist=self.persist_credential,
            renderer=pairing_renderer,
            timeout=pairing_timeout,
        )
        self._connect_timeout = connect_timeout
        self._pairing_retry_delay = pairing_retry_delay
        self._machine = state_machine or ConnectionStateMachine()

        policy = backoff_policy or BackoffPolicy()
        self._backoff = Backoff(policy)
        self._store_backoff = Backoff(policy)

        self._credential: DeviceCredential | None = None
        self._session: TransportSession | None = None
        self._stop_event = asyncio.Event()
        self._terminated = asyncio.Event()
        self._terminating = False
        self._run_task: asyncio.Task | None = None
        self._rotation_task: asyncio.Task | None = None

    @property
    def state(self) -> ConnectionState:
        """Get the current connection state."""
        return self._machine.state

    @property
    def state_machine(self) -> ConnectionStateMachine:
        """Get the underlying state machine."""
        return self._machine

    @property
    def credential(self) -> DeviceCredential | None:
        """Get the in-memory credential (None while unpaired)."""
        return self._credential

    @property
    def backoff(self) -> Backoff:
        """Get the reconnect backoff."""
        return self._backoff

    @property
    def is_terminating(self) -> bool:
        """Check if termination has begun."""
        return self._terminating

    async def run(self) -> None:
        """Run the lifecycle until terminate() is called.

        Raises:
            StoreUnavailable: If the credential store cannot be read at startup
        """
        self._run_task = asyncio.current_task()
        try:
            credential = await self._credentials.load_credential()
            if self._terminating:
                return
            self._credential = credential
            if credential is None:
                logger.info("No stored credential; device must be paired")
                self._machine.start(ConnectionState.UNPAIRED)
            else:
                logger.info(f"Found stored credential for {credential.identity}")
                self._machine.start(ConnectionState.CONNECTING)

            while not self._terminating:
                await self._step()
        except asyncio.CancelledError:
            if not self._terminating:
                raise
        logger.debug("Lifecycle loop exited")

    async def _step(self) -> None:
        state = self.state
        if state is ConnectionState.UNPAIRED:
            await self._pair()
        elif state is ConnectionState.CONNECTING:
            await self._connect()
        elif state is ConnectionState.CONNECTED:
            await self._run_epoch()
        elif state is ConnectionState.DISCONNECTED:
            self._transition(ConnectionState.RECONNECTING, "automatic reconnect")
        elif state is ConnectionState.RECONNECTING:
            await self._wait_before_reconnect()
        else:
            # AWAITING_PAIRING is only held inside _pair(); TERMINATED ends the loop
            raise RuntimeError(f"Lifecycle loop in unexpected state {state.value}")

    async def _pair(self) -> None:
        self._transition(ConnectionState.AWAITING_PAIRING, "starting pairing handshake")
        outcome = await self._pairing.run()
        if self._terminating:
            return

        if outcome.confirmed:
            self._credential = outcome.credential
            self._transition(ConnectionState.CONNECTING, "pairing confirmed")
            return

        self._transition(
            ConnectionState.UNPAIRED, f"pairing {outcome.status.value}: {outcome.reason}"
        )
        logger.info(f"Retrying pairing in {self._pairing_retry_delay:.1f}s")
        await self._sleep(self._pairing_retry_delay)

    async def _connect(self) -> None:
        try:
            session = await asyncio.wait_for(
                self._transport.connect(self._credential), self._connect_timeout
            )
        except CredentialRevoked as e:
            await self._handle_revoked(str(e))
            return
        except asyncio.TimeoutError:
            logger.warning(f"Connect attempt timed out after {self._connect_timeout:.1f}s")
            self._transition(ConnectionState.RECONNECTING, "connect timeout")
            return
        except ConnectError as e:
            logger.warning(f"Connect attempt failed: {e}")
            self._transition(ConnectionState.RECONNECTING, "connect error")
            return

        self._session = session
        self._backoff.reset()
        identity = session.identity or (self._credential.identity if self._credential else None)
        self._transition(ConnectionState.CONNECTED, f"logged in as {identity}")

    async def _run_epoch(self) -> None:
        end = await self._dispatcher.run_epoch(
            self._session, on_credential_rotated=self._on_credential_rotated
        )
        if self._terminating:
            return

        await self._release_session()
        if end is EpochEnd.SESSION_REVOKED:
            await self._handle_revoked("network logged this device out")
            return
        logger.warning(f"Connection ended: {end.value}")
        self._transition(ConnectionState.DISCONNECTED, end.value)

    async def _wait_before_reconnect(self) -> None:
        delay = self._backoff.next_delay()
        logger.info(f"Reconnecting in {delay:.2f}s (attempt {self._backoff.attempts})")
        await self._sleep(delay)
        if not self._terminating:
            self._transition(ConnectionState.CONNECTING, "backoff elapsed")

    async def _handle_revoked(self, reason: str) -> None:
        logger.error(
            f"Credential revoked ({reason}); discarding stored session, re-pairing required"
        )
        self._credential = None
        self._cancel_rotation_write()
        await self._release_session()
        await self._retry_store_write(self._credentials.discard_credential, "discard")
        if not self._terminating:
            self._transition(ConnectionState.UNPAIRED, "credential revoked")

    async def _on_credential_rotated(self, credential: DeviceCredential) -> None:
        """Store rotated session material without holding up the event stream.

        The write runs in its own task so reading continues while the store
        is retried. A newer rotation supersedes a pending one.
        """
        logger.info(f"Credential rotated for {credential.identity}")
        self._credential = credential
        self._cancel_rotation_write()
        self._rotation_task = asyncio.create_task(
            self._persist_rotated(credential), name="persist-rotated-credential"
        )

    async def _persist_rotated(self, credential: DeviceCredential) -> None:
        try:
            await self.persist_credential(credential)
        except Exception as e:
            logger.error(f"Could not store rotated credential: {e}", exc_info=True)

    def _cancel_rotation_write(self) -> None:
        task = self._rotation_task
        self._rotation_task = None
        if task is not None and not task.done():
            task.cancel()

    async def persist_credential(self, credential: DeviceCredential) -> bool:
        """Store a credential, retrying under backoff while the store is down.

        Returns:
            True once stored, False if termination began first
        """
        return await self._retry_store_write(
            lambda: self._credentials.save_credential(credential), "save"
        )

    async def _retry_store_write(self, write, action: str) -> bool:
        while not self._terminating:
            try:
                await write()
            except StoreUnavailable as e:
                delay = self._store_backoff.next_delay()
                logger.warning(f"Credential {action} failed ({e}); retrying in {delay:.2f}s")
                await self._sleep(delay)
                continue
            self._store_backoff.reset()
            return True
        return False

    async def terminate(self, reason: str = "shutdown requested") -> None:
        """Drive the lifecycle to TERMINATED.

        In-flight handler work finishes, no new events are dispatched, and
        the live session is closed exactly once. Repeated calls wait for the
        first one and then return.
        """
        if self._terminating:
            await self._terminated.wait()
            return
        self._terminating = True
        self._stop_event.set()
        logger.info(f"Terminating ({reason}) from state {self.state.value}")

        try:
            await self._dispatcher.stop()

            task = self._run_task
            if task is not None and task is not asyncio.current_task() and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.error(f"Lifecycle loop failed during shutdown: {e}")

            rotation = self._rotation_task
            if rotation is not None and not rotation.done():
                await asyncio.wait([rotation])

            await self._release_session()
            if not self._machine.is_terminated:
                self._machine.transition_to(ConnectionState.TERMINATED, reason)
        finally:
            self._terminated.set()

    async def wait_terminated(self) -> None:
        """Wait until terminate() has completed."""
        await self._terminated.wait()

    async def _release_session(self) -> None:
        if self._session is None:
            return
        self._session = None
        try:
            await self._transport.disconnect()
        except Exception as e:
            logger.warning(f"Error closing connection: {e}")

    def _transition(self, new_state: ConnectionState, reason: str) -> None:
        if self._terminating or self._machine.is_terminated:
            return
        self._machine.transition_to(new_state, reason)

    async def _sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds, returning early on termination."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), delay)
        except asyncio.TimeoutError:
            pass
