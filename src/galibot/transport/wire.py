"""JSON wire format of the multi-device bridge."""

import base64
import binascii
from typing import Any

from galibot.interfaces.events import (
    ConnectionEstablished,
    ConnectionLost,
    CredentialRotated,
    DeviceCredential,
    DeviceIdentity,
    InboundEvent,
    MessageReceived,
    PairingArtifact,
    PairingCancelled,
    PairingCodeIssued,
    PairingConfirmed,
    SessionRevoked,
    UnknownEvent,
)


class WireFormatError(ValueError):
    """A bridge payload is missing required fields."""


def encode_credential(credential: DeviceCredential) -> dict[str, str]:
    """Encode a credential for the bridge."""
    return {
        "device_id": credential.identity.device_id,
        "data": base64.b64encode(credential.payload).decode("ascii"),
    }


def decode_credential(data: dict[str, Any]) -> DeviceCredential:
    """Decode a credential sent by the bridge.

    Raises:
        WireFormatError: If fields are missing or the data is not base64
    """
    if not isinstance(data, dict):
        raise WireFormatError(f"Credential must be an object, got {type(data).__name__}")
    try:
        device_id = data["device_id"]
        payload = base64.b64decode(data["data"], validate=True)
    except (KeyError, TypeError, binascii.Error) as e:
        raise WireFormatError(f"Invalid credential payload: {e}") from e
    return DeviceCredential(identity=DeviceIdentity(device_id), payload=payload)


def decode_artifact(data: dict[str, Any]) -> PairingArtifact:
    """Decode a pairing code.

    Raises:
        WireFormatError: If the code is missing or a field has the wrong type
    """
    if not isinstance(data, dict):
        raise WireFormatError(f"Pairing code must be an object, got {type(data).__name__}")
    code = data.get("code")
    if not code:
        raise WireFormatError("Pairing code missing")
    try:
        sequence = int(data.get("sequence", 0))
        valid_for = float(data.get("valid_for", 20.0))
    except (TypeError, ValueError) as e:
        raise WireFormatError(f"Invalid pairing code fields: {e}") from e
    return PairingArtifact(code=str(code), sequence=sequence, valid_for=valid_for)


def decode_event(raw: dict[str, Any]) -> InboundEvent:
    """Decode one bridge event into an InboundEvent.

    Event types this version does not know become UnknownEvent.

    Raises:
        WireFormatError: If the event is not an object or a known event type
            lacks required fields
    """
    if not isinstance(raw, dict):
        raise WireFormatError(f"Event must be an object, got {type(raw).__name__}")
    event_type = raw.get("type", "")

    if event_type == "message":
        try:
            return MessageReceived(
                chat=raw["chat"],
                sender=raw.get("sender", raw["chat"]),
                text=raw.get("text") or "",
                message_id=raw.get("id", ""),
                timestamp=raw.get("timestamp"),
            )
        except KeyError as e:
            raise WireFormatError(f"Message event missing {e}") from e

    if event_type == "connected":
        device_id = raw.get("device_id")
        return ConnectionEstablished(identity=DeviceIdentity(device_id) if device_id else None)

    if event_type == "disconnected":
        return ConnectionLost(reason=raw.get("reason", ""))

    if event_type == "pair_code":
        return PairingCodeIssued(artifact=decode_artifact(raw))

    if event_type == "pair_success":
        return PairingConfirmed(credential=decode_credential(raw.get("credential") or {}))

    if event_type in ("pair_cancelled", "pair_error"):
        return PairingCancelled(reason=raw.get("reason", event_type))

    if event_type == "logged_out":
        return SessionRevoked(reason=raw.get("reason", ""))

    if event_type == "credential_rotated":
        return CredentialRotated(credential=decode_credential(raw.get("credential") or {}))

    return UnknownEvent(type_name=event_type, data=dict(raw))
