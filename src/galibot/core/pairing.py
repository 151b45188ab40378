"""Pairing handshake for first-time device authorization."""

import asyncio
import logging
import sys
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TextIO

from galibot.core.latest import LatestValue
from galibot.errors import ConnectError, CredentialRevoked
from galibot.interfaces.events import (
    DeviceCredential,
    PairingArtifact,
    PairingCancelled,
    PairingCodeIssued,
    PairingConfirmed,
)
from galibot.interfaces.transport import Transport, TransportSession

logger = logging.getLogger(__name__)

ArtifactRenderer = Callable[[PairingArtifact], None]

# Persists the confirmed credential; returns False if it gave up (shutdown)
CredentialPersister = Callable[[DeviceCredential], Awaitable[bool]]


class PairingStatus(Enum):
    """How a pairing attempt ended."""

    CONFIRMED = "confirmed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class PairingOutcome:
    """Result of one pairing attempt.

    Attributes:
        status: How the attempt ended
        credential: The persisted credential (only when CONFIRMED)
        reason: Explanation for non-confirmed outcomes
    """

    status: PairingStatus
    credential: DeviceCredential | None = None
    reason: str = ""

    @property
    def confirmed(self) -> bool:
        """Check if the device is now paired."""
        return self.status is PairingStatus.CONFIRMED


class ConsoleArtifactRenderer:
    """Prints pairing codes to the operator console."""

    def __init__(self, stream: TextIO | None = None) -> None:
        """Initialize the renderer.

        Args:
            stream: Output stream (defaults to stdout at render time)
        """
        self._stream = stream

    def __call__(self, artifact: PairingArtifact) -> None:
        stream = self._stream or sys.stdout
        remaining = max(0, int(artifact.expires_at - time.monotonic()))
        border = "=" * 48
        print(border, file=stream)
        print("Link this bot from your phone: Linked devices > Link a device", file=stream)
        print(f"Pairing code #{artifact.sequence} (valid {remaining}s):", file=stream)
        print("", file=stream)
        print(f"  {artifact.code}", file=stream)
        print(border, file=stream, flush=True)


class PairingHandshake:
    """Drives one pairing attempt against the transport.

    Flow:
    1. Open an unpaired transport session and request a pairing code
    2. Show the newest unexpired code; request a fresh one when it expires
    3. Wait for confirmation, cancellation, or the overall timeout
    4. On confirmation, persist the credential before reporting success

    Newer codes always replace older ones; a code with a lower sequence than
    the one already shown is ignored. The pairing session is closed in every
    outcome so the lifecycle manager can open the real connection.
    """

    def __init__(
        self,
        transport: Transport,
        persist: CredentialPersister,
        renderer: ArtifactRenderer | None = None,
        timeout: float = 180.0,
    ) -> None:
        """Initialize the handshake.

        Args:
            transport: Transport used to open the unpaired session
            persist: Callback storing the confirmed credential
            renderer: Operator-facing output for pairing codes
            timeout: Overall seconds to wait for confirmation
        """
        self._transport = transport
        self._persist = persist
        self._renderer = renderer or ConsoleArtifactRenderer()
        self._timeout = timeout

    async def run(self) -> PairingOutcome:
        """Run one pairing attempt.

        Returns:
            PairingOutcome describing how the attempt ended
        """
        logger.info("Starting pairing handshake")
        try:
            session = await self._transport.connect(None)
        except (ConnectError, CredentialRevoked) as e:
            logger.warning(f"Could not open pairing session: {e}")
            return PairingOutcome(PairingStatus.FAILED, reason=str(e))

        try:
            outcome = await self._pair(session)
        finally:
            await self._close_session()

        if not outcome.confirmed:
            return outcome

        # Credential must be durable before the device counts as paired
        if not await self._persist(outcome.credential):
            return PairingOutcome(
                PairingStatus.CANCELLED, reason="credential was not persisted"
            )
        logger.info(f"Pairing confirmed for {outcome.credential.identity}")
        return outcome

    async def _pair(self, session: TransportSession) -> PairingOutcome:
        latest: LatestValue[PairingArtifact] = LatestValue()
        try:
            self._offer(latest, await self._transport.issue_pairing_artifact())
        except ConnectError as e:
            logger.warning(f"Could not obtain a pairing code: {e}")
            return PairingOutcome(PairingStatus.FAILED, reason=str(e))

        display_task = asyncio.create_task(self._display_latest(latest))
        try:
            return await asyncio.wait_for(
                self._await_confirmation(session, latest), self._timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Pairing timed out after {self._timeout:.0f}s")
            return PairingOutcome(PairingStatus.TIMED_OUT, reason="pairing timed out")
        finally:
            display_task.cancel()
            try:
                await display_task
            except asyncio.CancelledError:
                pass

    async def _await_confirmation(
        self, session: TransportSession, latest: LatestValue[PairingArtifact]
    ) -> PairingOutcome:
        async for event in session.events:
            if isinstance(event, PairingCodeIssued):
                self._offer(latest, event.artifact)
            elif isinstance(event, PairingConfirmed):
                return PairingOutcome(PairingStatus.CONFIRMED, credential=event.credential)
            elif isinstance(event, PairingCancelled):
                logger.warning(f"Pairing cancelled: {event.reason or 'no reason given'}")
                return PairingOutcome(PairingStatus.CANCELLED, reason=event.reason)
            else:
                logger.debug(f"Ignoring {event.kind.value} event during pairing")
        return PairingOutcome(
            PairingStatus.FAILED, reason="event stream ended before pairing completed"
        )

    @staticmethod
    def _offer(latest: LatestValue[PairingArtifact], artifact: PairingArtifact) -> None:
        _, current = latest.get()
        if not artifact.supersedes(current):
            logger.debug(f"Ignoring stale pairing code #{artifact.sequence}")
            return
        latest.set(artifact)

    async def _display_latest(self, latest: LatestValue[PairingArtifact]) -> None:
        """Render each new code; request a replacement when the shown one expires."""
        seen = 0
        while True:
            version, artifact = latest.get()
            if version > seen:
                seen = version
                if not artifact.is_expired():
                    self._render(artifact)
                    continue
            wait = artifact.expires_at - time.monotonic() if artifact else None
            if wait is not None and wait <= 0:
                await self._refresh(latest)
                # Avoid a tight loop if the transport keeps returning stale codes
                if latest.version == seen:
                    await asyncio.sleep(1.0)
                continue
            try:
                await latest.wait_newer(seen, timeout=wait)
            except asyncio.TimeoutError:
                pass

    async def _refresh(self, latest: LatestValue[PairingArtifact]) -> None:
        try:
            self._offer(latest, await self._transport.issue_pairing_artifact())
        except ConnectError as e:
            logger.warning(f"Could not refresh pairing code: {e}")

    def _render(self, artifact: PairingArtifact) -> None:
        try:
            self._renderer(artifact)
        except Exception as e:
            logger.error(f"Failed to render pairing code: {e}")

    async def _close_session(self) -> None:
        try:
            await self._transport.disconnect()
        except Exception as e:
            logger.warning(f"Error closing pairing session: {e}")
