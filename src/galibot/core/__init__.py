"""Core module - Lifecycle, pairing, dispatch and shutdown."""

from galibot.core.backoff import Backoff, BackoffPolicy
from galibot.core.credential_adapter import CredentialAdapter, resolve_connection_string
from galibot.core.dispatcher import EpochEnd, EventDispatcher
from galibot.core.handler_registry import HandlerRegistry
from galibot.core.latest import LatestValue
from galibot.core.lifecycle import LifecycleManager
from galibot.core.pairing import (
    ConsoleArtifactRenderer,
    PairingHandshake,
    PairingOutcome,
    PairingStatus,
)
from galibot.core.shutdown import ShutdownCoordinator
from galibot.core.state import ConnectionState, ConnectionStateMachine

__all__ = [
    "Backoff",
    "BackoffPolicy",
    "ConnectionState",
    "ConnectionStateMachine",
    "ConsoleArtifactRenderer",
    "CredentialAdapter",
    "EpochEnd",
    "EventDispatcher",
    "HandlerRegistry",
    "LatestValue",
    "LifecycleManager",
    "PairingHandshake",
    "PairingOutcome",
    "PairingStatus",
    "ShutdownCoordinator",
    "resolve_connection_string",
]
