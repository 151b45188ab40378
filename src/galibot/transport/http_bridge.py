"""Transport talking to a multi-device bridge service over HTTP."""

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from galibot.errors import ConnectError, CredentialRevoked, SendError
from galibot.interfaces.events import (
    ConnectionLost,
    DeviceCredential,
    DeviceIdentity,
    InboundEvent,
    PairingArtifact,
    SessionRevoked,
)
from galibot.interfaces.transport import Transport, TransportSession
from galibot.transport.wire import decode_artifact, decode_event, encode_credential

logger = logging.getLogger(__name__)

# Bridge answers these when it rejects the stored credential
_REVOKED_STATUSES = (401, 403)
# Bridge answers these when the session no longer exists
_GONE_STATUSES = (404, 410)


class HttpBridgeTransport(Transport):
    """Transport for a bridge that runs the messaging protocol on our behalf.

    The bridge holds the encrypted connection to the network. This class
    opens a bridge session, long-polls it for events, and posts replies.

    Endpoints:
        POST   /v1/sessions                    open a session (credential or unpaired)
        GET    /v1/sessions/{id}/events        long-poll inbound events
        POST   /v1/sessions/{id}/pairing       request a fresh pairing code
        POST   /v1/sessions/{id}/messages      send a message
        DELETE /v1/sessions/{id}               close the session
    """

    def __init__(
        self,
        base_url: str,
        api_token: str | None = None,
        request_timeout: float = 10.0,
        poll_timeout: float = 25.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the bridge transport.

        Args:
            base_url: Bridge base URL (e.g., "http://bridge:8080")
            api_token: Bearer token for the bridge API
            request_timeout: Timeout for ordinary requests (seconds)
            poll_timeout: How long the bridge may hold an event poll open (seconds)
            client: Custom HTTP client (created from base_url if not provided)
        """
        self._base_url = base_url.rstrip("/")
        self._request_timeout = request_timeout
        self._poll_timeout = poll_timeout
        headers = {"Authorization": f"Bearer {api_token}"} if api_token else {}
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url, headers=headers, timeout=request_timeout
        )
        self._session_id: str | None = None

    @property
    def is_connected(self) -> bool:
        """Check if a bridge session is open."""
        return self._session_id is not None

    async def connect(self, credential: DeviceCredential | None) -> TransportSession:
        """Open a bridge session.

        Raises:
            ConnectError: If the bridge cannot be reached or refuses the session
            CredentialRevoked: If the bridge rejects the credential
        """
        if self._session_id is not None:
            raise ConnectError("A bridge session is already open")

        body: dict[str, Any] = {
            "credential": encode_credential(credential) if credential else None,
        }
        try:
            response = await self._client.post("/v1/sessions", json=body)
        except httpx.HTTPError as e:
            raise ConnectError(f"Bridge unreachable: {e}") from e

        if response.status_code in _REVOKED_STATUSES and credential is not None:
            raise CredentialRevoked(_error_detail(response, "credential rejected"))
        if response.is_error:
            raise ConnectError(f"Bridge refused session: HTTP {response.status_code}")

        try:
            data = response.json()
            session_id = data["session_id"]
        except (ValueError, KeyError, TypeError) as e:
            raise ConnectError(f"Malformed session response: {e}") from e

        device_id = data.get("device_id")
        identity = DeviceIdentity(device_id) if device_id else None
        self._session_id = session_id
        logger.info(f"Bridge session {session_id} opened ({identity or 'unpaired'})")
        return TransportSession(identity=identity, events=self._poll_events(session_id))

    async def disconnect(self) -> None:
        """Close the bridge session, if any."""
        session_id = self._session_id
        if session_id is None:
            return
        self._session_id = None
        try:
            await self._client.delete(f"/v1/sessions/{session_id}")
        except httpx.HTTPError as e:
            logger.warning(f"Error closing bridge session {session_id}: {e}")
        logger.info(f"Bridge session {session_id} closed")

    async def send(self, recipient: str, payload: str | dict[str, Any]) -> None:
        """Send a message through the bridge.

        Raises:
            SendError: If no session is open or the bridge rejects the message
        """
        session_id = self._session_id
        if session_id is None:
            raise SendError("Cannot send message: not connected")

        body: dict[str, Any] = {"to": recipient}
        if isinstance(payload, str):
            body["text"] = payload
        else:
            body["message"] = payload

        try:
            response = await self._client.post(f"/v1/sessions/{session_id}/messages", json=body)
        except httpx.HTTPError as e:
            raise SendError(f"Bridge unreachable: {e}") from e
        if response.is_error:
            raise SendError(_error_detail(response, f"HTTP {response.status_code}"))

    async def issue_pairing_artifact(self) -> PairingArtifact:
        """Request a fresh pairing code.

        Raises:
            ConnectError: If no session is open or the bridge does not answer
        """
        session_id = self._session_id
        if session_id is None:
            raise ConnectError("Cannot request pairing code: not connected")
        try:
            response = await self._client.post(f"/v1/sessions/{session_id}/pairing")
            response.raise_for_status()
            return decode_artifact(response.json())
        except (httpx.HTTPError, ValueError) as e:
            raise ConnectError(f"Pairing code request failed: {e}") from e

    async def aclose(self) -> None:
        """Close the session and the underlying HTTP client."""
        await self.disconnect()
        await self._client.aclose()

    async def _poll_events(self, session_id: str) -> AsyncIterator[InboundEvent]:
        """Yield events until the session closes.

        Link failures are reported as a final ConnectionLost event rather
        than raised, so the consumer sees a clean end of epoch.
        """
        while self._session_id == session_id:
            try:
                response = await self._client.get(
                    f"/v1/sessions/{session_id}/events",
                    params={"timeout": self._poll_timeout},
                    timeout=self._poll_timeout + self._request_timeout,
                )
            except httpx.HTTPError as e:
                if self._session_id != session_id:
                    return
                yield ConnectionLost(reason=f"bridge unreachable: {e}")
                return

            if response.status_code in _REVOKED_STATUSES:
                yield SessionRevoked(reason=_error_detail(response, "session rejected"))
                return
            if response.status_code in _GONE_STATUSES:
                yield ConnectionLost(reason="session closed by bridge")
                return
            if response.is_error:
                yield ConnectionLost(reason=f"event poll failed: HTTP {response.status_code}")
                return

            try:
                batch = response.json()
            except ValueError as e:
                logger.warning(f"Malformed event batch ignored: {e}")
                continue
            raw_events = batch.get("events", []) if isinstance(batch, dict) else None
            if not isinstance(raw_events, list):
                logger.warning(f"Malformed event batch ignored: {batch!r}")
                continue

            for raw in raw_events:
                try:
                    event = decode_event(raw)
                except (ValueError, TypeError) as e:
                    logger.warning(f"Malformed event ignored: {e}")
                    continue
                yield event


def _error_detail(response: httpx.Response, default: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return default
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return default
