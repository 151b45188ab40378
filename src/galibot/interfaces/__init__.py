"""Interfaces module - Abstract base classes and event dataclasses."""

from galibot.interfaces.credential_store import CredentialStore
from galibot.interfaces.events import (
    ConnectionEstablished,
    ConnectionLost,
    CredentialRotated,
    DeviceCredential,
    DeviceIdentity,
    EventKind,
    InboundEvent,
    MessageReceived,
    OutboundReply,
    PairingArtifact,
    PairingCancelled,
    PairingCodeIssued,
    PairingConfirmed,
    SessionRevoked,
    UnknownEvent,
)
from galibot.interfaces.transport import Transport, TransportSession

__all__ = [
    "ConnectionEstablished",
    "ConnectionLost",
    "CredentialRotated",
    "CredentialStore",
    "DeviceCredential",
    "DeviceIdentity",
    "EventKind",
    "InboundEvent",
    "MessageReceived",
    "OutboundReply",
    "PairingArtifact",
    "PairingCancelled",
    "PairingCodeIssued",
    "PairingConfirmed",
    "SessionRevoked",
    "Transport",
    "TransportSession",
    "UnknownEvent",
]
