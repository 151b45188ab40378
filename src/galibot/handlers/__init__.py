"""Handlers module - Built-in event handlers."""

from galibot.handlers.builtin import EchoHandler, register_builtin_handlers

__all__ = [
    "EchoHandler",
    "register_builtin_handlers",
]
