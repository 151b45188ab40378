"""Shared test fixtures for pytest."""

import pytest

from galibot.config import Config
from galibot.core.backoff import BackoffPolicy
from galibot.core.credential_adapter import CredentialAdapter
from galibot.core.dispatcher import EventDispatcher
from galibot.core.handler_registry import HandlerRegistry
from galibot.core.lifecycle import LifecycleManager
from galibot.interfaces.events import DeviceCredential
from tests.mocks import (
    MemoryCredentialStore,
    MockTransport,
    RecordingRenderer,
    make_credential,
)


@pytest.fixture
def credential() -> DeviceCredential:
    """Create a test DeviceCredential."""
    return make_credential()


@pytest.fixture
def mock_transport() -> MockTransport:
    """Create a MockTransport."""
    return MockTransport()


@pytest.fixture
def memory_store() -> MemoryCredentialStore:
    """Create an empty MemoryCredentialStore."""
    return MemoryCredentialStore()


@pytest.fixture
def registry() -> HandlerRegistry:
    """Create a test HandlerRegistry."""
    return HandlerRegistry()


@pytest.fixture
def renderer() -> RecordingRenderer:
    """Create a RecordingRenderer."""
    return RecordingRenderer()


@pytest.fixture
def fast_backoff() -> BackoffPolicy:
    """Backoff policy with millisecond delays."""
    return BackoffPolicy(base_delay=0.01, max_delay=0.05, factor=2.0, jitter=0.0)


@pytest.fixture
def dispatcher(registry: HandlerRegistry, mock_transport: MockTransport) -> EventDispatcher:
    """Create an EventDispatcher over the mock transport."""
    return EventDispatcher(registry, mock_transport)


@pytest.fixture
def lifecycle(
    mock_transport: MockTransport,
    memory_store: MemoryCredentialStore,
    dispatcher: EventDispatcher,
    fast_backoff: BackoffPolicy,
    renderer: RecordingRenderer,
) -> LifecycleManager:
    """Create a LifecycleManager wired to mocks with short timeouts."""
    return LifecycleManager(
        transport=mock_transport,
        credentials=CredentialAdapter(memory_store),
        dispatcher=dispatcher,
        backoff_policy=fast_backoff,
        connect_timeout=1.0,
        pairing_timeout=2.0,
        pairing_retry_delay=0.01,
        pairing_renderer=renderer,
    )


@pytest.fixture
def default_config() -> Config:
    """Create default configuration."""
    return Config.default()
