"""Inbound event variants and the data carried between core and transport."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Union


@dataclass(frozen=True)
class DeviceIdentity:
    """Identifier assigned by the transport once pairing completes.

    Attributes:
        device_id: Network-assigned device address (e.g., "15550001111.0:7@s.whatsapp.net")
    """

    device_id: str

    def __post_init__(self) -> None:
        """Validate identity."""
        if not self.device_id:
            raise ValueError("device_id cannot be empty")

    def __str__(self) -> str:
        return self.device_id


@dataclass(frozen=True)
class DeviceCredential:
    """Session material needed to reconnect without pairing again.

    The payload is opaque to the core; it is only passed between the
    transport and the credential store and never printed.

    Attributes:
        identity: The device this credential belongs to
        payload: Serialized keys and registration metadata
    """

    identity: DeviceIdentity
    payload: bytes = field(repr=False)


@dataclass(frozen=True)
class PairingArtifact:
    """A pairing code shown to the operator.

    Attributes:
        code: Text the operator scans or types on the primary device
        sequence: Issue order; a higher sequence supersedes a lower one
        valid_for: Seconds the code stays valid after issue
        issued_at: Monotonic timestamp of issue
    """

    code: str
    sequence: int = 0
    valid_for: float = 20.0
    issued_at: float = field(default_factory=time.monotonic)

    @property
    def expires_at(self) -> float:
        """Monotonic time after which the code is no longer accepted."""
        return self.issued_at + self.valid_for

    def is_expired(self, now: float | None = None) -> bool:
        """Check whether the code has passed its validity window."""
        if now is None:
            now = time.monotonic()
        return now >= self.expires_at

    def supersedes(self, other: "PairingArtifact | None") -> bool:
        """Check whether this artifact replaces ``other``."""
        return other is None or self.sequence > other.sequence


class EventKind(Enum):
    """Discriminant of every inbound event variant."""

    MESSAGE_RECEIVED = "message_received"
    CONNECTION_ESTABLISHED = "connection_established"
    CONNECTION_LOST = "connection_lost"
    PAIRING_CODE_ISSUED = "pairing_code_issued"
    PAIRING_CONFIRMED = "pairing_confirmed"
    PAIRING_CANCELLED = "pairing_cancelled"
    SESSION_REVOKED = "session_revoked"
    CREDENTIAL_ROTATED = "credential_rotated"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class MessageReceived:
    """A chat message delivered to this device.

    Attributes:
        chat: Conversation the message belongs to (reply target)
        sender: Author of the message
        text: Plain-text body (empty for media-only messages)
        message_id: Network message ID
        timestamp: Unix time the message was sent
    """

    chat: str
    sender: str
    text: str
    message_id: str = ""
    timestamp: float | None = None

    kind: ClassVar[EventKind] = EventKind.MESSAGE_RECEIVED


@dataclass(frozen=True)
class ConnectionEstablished:
    """The transport finished logging in for this epoch."""

    identity: DeviceIdentity | None = None

    kind: ClassVar[EventKind] = EventKind.CONNECTION_ESTABLISHED


@dataclass(frozen=True)
class ConnectionLost:
    """The link to the network closed, remotely or through a network failure."""

    reason: str = ""

    kind: ClassVar[EventKind] = EventKind.CONNECTION_LOST


@dataclass(frozen=True)
class PairingCodeIssued:
    """A new pairing artifact is available."""

    artifact: PairingArtifact

    kind: ClassVar[EventKind] = EventKind.PAIRING_CODE_ISSUED


@dataclass(frozen=True)
class PairingConfirmed:
    """The operator authorized this device on the primary phone."""

    credential: DeviceCredential

    kind: ClassVar[EventKind] = EventKind.PAIRING_CONFIRMED


@dataclass(frozen=True)
class PairingCancelled:
    """The pairing attempt was rejected or abandoned."""

    reason: str = ""

    kind: ClassVar[EventKind] = EventKind.PAIRING_CANCELLED


@dataclass(frozen=True)
class SessionRevoked:
    """The network no longer accepts the stored credential (logged out)."""

    reason: str = ""

    kind: ClassVar[EventKind] = EventKind.SESSION_REVOKED


@dataclass(frozen=True)
class CredentialRotated:
    """The transport refreshed the session material; it must be stored."""

    credential: DeviceCredential

    kind: ClassVar[EventKind] = EventKind.CREDENTIAL_ROTATED


@dataclass(frozen=True)
class UnknownEvent:
    """An event type this version does not understand.

    Attributes:
        type_name: Event type as reported by the transport
        data: Raw event fields
    """

    type_name: str
    data: dict[str, Any] = field(default_factory=dict)

    kind: ClassVar[EventKind] = EventKind.UNKNOWN


InboundEvent = Union[
    MessageReceived,
    ConnectionEstablished,
    ConnectionLost,
    PairingCodeIssued,
    PairingConfirmed,
    PairingCancelled,
    SessionRevoked,
    CredentialRotated,
    UnknownEvent,
]


@dataclass(frozen=True)
class OutboundReply:
    """A reply a handler wants delivered.

    Attributes:
        recipient: Chat/conversation identifier to deliver to
        payload: Text body or a structured message
    """

    recipient: str
    payload: str | dict[str, Any]

    def __post_init__(self) -> None:
        """Validate reply."""
        if not self.recipient:
            raise ValueError("recipient cannot be empty")
