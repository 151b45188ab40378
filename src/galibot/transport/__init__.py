"""Transport module - Messaging network transport implementations."""

from galibot.interfaces.transport import Transport
from galibot.transport.http_bridge import HttpBridgeTransport

__all__ = [
    "HttpBridgeTransport",
    "Transport",
]
