"""Built-in event handlers."""

import logging

from galibot.core.handler_registry import HandlerRegistry
from galibot.interfaces.events import (
    ConnectionEstablished,
    ConnectionLost,
    EventKind,
    MessageReceived,
    OutboundReply,
    SessionRevoked,
)

logger = logging.getLogger(__name__)


class EchoHandler:
    """Acknowledges every text message by echoing it back to its chat.

    Example:
        "hello" in chat C -> reply "Received: hello" to chat C
    """

    def __init__(self, prefix: str = "Received: ") -> None:
        """Initialize the echo handler.

        Args:
            prefix: Text placed before the echoed message
        """
        self._prefix = prefix

    def __call__(self, event: MessageReceived) -> OutboundReply | None:
        logger.info(f"Received a message from {event.sender} in {event.chat}")
        if not event.text:
            # Media or reactions carry no text to echo
            return None
        return OutboundReply(recipient=event.chat, payload=f"{self._prefix}{event.text}")


def log_connection_established(event: ConnectionEstablished) -> None:
    who = event.identity or "unknown device"
    logger.info(f"Connected to messaging network as {who}")


def log_connection_lost(event: ConnectionLost) -> None:
    logger.warning(f"Connection lost: {event.reason or 'no reason given'}")


def log_session_revoked(event: SessionRevoked) -> None:
    logger.error(f"Logged out by the network: {event.reason or 'no reason given'}")


def register_builtin_handlers(registry: HandlerRegistry, reply_prefix: str = "Received: ") -> None:
    """Register the built-in handlers.

    Args:
        registry: Registry to populate
        reply_prefix: Prefix for echo replies
    """
    registry.register(EventKind.MESSAGE_RECEIVED, EchoHandler(prefix=reply_prefix))
    registry.register(EventKind.CONNECTION_ESTABLISHED, log_connection_established)
    registry.register(EventKind.CONNECTION_LOST, log_connection_lost)
    registry.register(EventKind.SESSION_REVOKED, log_session_revoked)
