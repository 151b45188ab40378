"""Handler registry mapping each event kind to exactly one handler."""

from collections.abc import Awaitable, Callable
from typing import Any, Union

from galibot.interfaces.events import EventKind, OutboundReply

HandlerResult = Union[OutboundReply, None]

# Sync handlers run in a worker thread; async handlers are awaited
EventHandler = Callable[[Any], Union[HandlerResult, Awaitable[HandlerResult]]]


class HandlerRegistry:
    """Registry of event handlers keyed by EventKind.

    Each kind has at most one handler, so every dispatched event reaches
    exactly one handler or is dropped when none is registered.
    """

    def __init__(self) -> None:
        """Initialize the handler registry."""
        self._handlers: dict[EventKind, EventHandler] = {}

    def register(self, kind: EventKind, handler: EventHandler) -> None:
        """Register a handler.

        Args:
            kind: The event kind the handler receives
            handler: Callable taking the event and returning an optional reply

        Raises:
            ValueError: If the kind already has a handler
        """
        if kind in self._handlers:
            existing = self._handlers[kind]
            raise ValueError(
                f"Event kind '{kind.value}' is already handled by {_handler_name(existing)}"
            )
        self._handlers[kind] = handler

    def unregister(self, kind: EventKind) -> bool:
        """Unregister the handler for a kind.

        Returns:
            True if a handler was removed, False if none was registered
        """
        return self._handlers.pop(kind, None) is not None

    def get(self, kind: EventKind) -> EventHandler | None:
        """Get the handler for a kind, or None."""
        return self._handlers.get(kind)

    def kinds(self) -> list[EventKind]:
        """Get all kinds with a registered handler, in declaration order."""
        return [kind for kind in EventKind if kind in self._handlers]

    @property
    def handler_count(self) -> int:
        """Get the number of registered handlers."""
        return len(self._handlers)

    def __contains__(self, kind: EventKind) -> bool:
        """Check if a kind has a handler."""
        return kind in self._handlers


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", None) or type(handler).__name__
