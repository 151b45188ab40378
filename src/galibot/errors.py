"""Error taxonomy for the bot core."""


class GalibotError(Exception):
    """Base class for all galibot errors."""


class ConfigError(GalibotError):
    """Configuration is missing or invalid. Fatal at startup."""


class StoreUnavailable(GalibotError):
    """The credential store cannot be reached.

    Distinct from "no credential stored yet", which is a normal ``None`` result.
    """


class ConnectError(GalibotError):
    """The transport could not establish a session."""


class CredentialRevoked(GalibotError):
    """The transport reports the stored session is no longer valid."""


class HandlerFailure(GalibotError):
    """An event handler raised while processing one event."""

    def __init__(self, kind: str, cause: BaseException) -> None:
        super().__init__(f"handler for {kind} failed: {cause}")
        self.kind = kind
        self.cause = cause


class SendError(GalibotError):
    """A reply could not be submitted to the transport."""


class InvalidTransition(GalibotError, ValueError):
    """A state change not allowed by the lifecycle state machine."""
