"""Transport interface - Abstract base class for messaging network transports."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from galibot.interfaces.events import (
    DeviceCredential,
    DeviceIdentity,
    InboundEvent,
    PairingArtifact,
)


@dataclass(frozen=True)
class TransportSession:
    """A live connection handle for one epoch.

    Attributes:
        identity: The logged-in device, or None while the device is unpaired
        events: Lazy inbound event sequence; consumed once, not restartable
    """

    identity: DeviceIdentity | None
    events: AsyncIterator[InboundEvent]


class Transport(ABC):
    """Abstract base class for messaging network transports.

    Transports own the wire protocol, encryption and multi-device fan-out.
    At most one session is live per transport at a time.
    """

    @abstractmethod
    async def connect(self, credential: DeviceCredential | None) -> TransportSession:
        """Open a session.

        Args:
            credential: Stored session material, or None to start unpaired

        Returns:
            The live session with its inbound event sequence

        Raises:
            ConnectError: If the session cannot be established
            CredentialRevoked: If the network rejects the credential
        """

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the live session, if any."""

    @abstractmethod
    async def send(self, recipient: str, payload: str | dict[str, Any]) -> None:
        """Submit a message for delivery.

        Args:
            recipient: Destination chat identifier
            payload: Text body or structured message

        Raises:
            SendError: If the message could not be submitted
        """

    @abstractmethod
    async def issue_pairing_artifact(self) -> PairingArtifact:
        """Request a fresh pairing code for the unpaired session.

        Raises:
            ConnectError: If no unpaired session is open
        """

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if a session is currently open."""
