"""Connection state machine with enforced transitions."""

import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from galibot.errors import InvalidTransition

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Lifecycle states of the single device connection."""

    UNPAIRED = "unpaired"
    AWAITING_PAIRING = "awaiting_pairing"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    TERMINATED = "terminated"


_S = ConnectionState

VALID_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    _S.UNPAIRED: frozenset({_S.AWAITING_PAIRING, _S.TERMINATED}),
    _S.AWAITING_PAIRING: frozenset({_S.UNPAIRED, _S.CONNECTING, _S.TERMINATED}),
    _S.CONNECTING: frozenset({_S.CONNECTED, _S.RECONNECTING, _S.UNPAIRED, _S.TERMINATED}),
    _S.CONNECTED: frozenset({_S.DISCONNECTED, _S.UNPAIRED, _S.TERMINATED}),
    _S.DISCONNECTED: frozenset({_S.RECONNECTING, _S.UNPAIRED, _S.TERMINATED}),
    _S.RECONNECTING: frozenset({_S.CONNECTING, _S.UNPAIRED, _S.TERMINATED}),
    _S.TERMINATED: frozenset(),  # Absorbing
}

StateListener = Callable[[ConnectionState, ConnectionState], None]


@dataclass(frozen=True)
class StateTransition:
    """A recorded state change."""

    from_state: ConnectionState
    to_state: ConnectionState
    reason: str = ""
    timestamp: float = field(default_factory=time.time)

    def __str__(self) -> str:
        return f"{self.from_state.value} -> {self.to_state.value} ({self.reason})"


class ConnectionStateMachine:
    """Holds the current ConnectionState and rejects invalid transitions.

    Exactly one instance exists per process and only the lifecycle manager
    mutates it. Listeners are notified after each transition; a failing
    listener is logged and does not undo the transition.
    """

    MAX_HISTORY = 100

    def __init__(self, initial: ConnectionState = ConnectionState.UNPAIRED) -> None:
        """Initialize the state machine.

        Args:
            initial: Starting state
        """
        self._state = initial
        self._started = False
        self._history: deque[StateTransition] = deque(maxlen=self.MAX_HISTORY)
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> ConnectionState:
        """Get the current state."""
        return self._state

    @property
    def is_terminated(self) -> bool:
        """Check if the absorbing TERMINATED state has been reached."""
        return self._state is ConnectionState.TERMINATED

    @property
    def history(self) -> list[StateTransition]:
        """Get recorded transitions, oldest first."""
        return list(self._history)

    def add_listener(self, listener: StateListener) -> None:
        """Register a callback invoked with (old_state, new_state)."""
        self._listeners.append(listener)

    def start(self, initial: ConnectionState) -> None:
        """Set the startup state before any transition has happened.

        The lifecycle manager only knows whether to start UNPAIRED or
        CONNECTING after reading the credential store.

        Raises:
            InvalidTransition: If transitions were already recorded
        """
        if self._history or self._started:
            raise InvalidTransition("state machine already started")
        self._started = True
        self._state = initial
        logger.info(f"Connection state initialized: {initial.value}")

    def can_transition(self, new_state: ConnectionState) -> bool:
        """Check whether moving to ``new_state`` is allowed."""
        return new_state in VALID_TRANSITIONS[self._state]

    def transition_to(self, new_state: ConnectionState, reason: str = "") -> StateTransition:
        """Move to a new state.

        Args:
            new_state: Target state
            reason: Human-readable cause, logged with the transition

        Returns:
            The recorded transition

        Raises:
            InvalidTransition: If the move is not in VALID_TRANSITIONS
        """
        if not self.can_transition(new_state):
            raise InvalidTransition(
                f"Invalid transition {self._state.value} -> {new_state.value}"
            )

        transition = StateTransition(self._state, new_state, reason)
        old_state = self._state
        self._state = new_state
        self._started = True
        self._history.append(transition)
        logger.info(f"Connection state: {transition}")

        for listener in list(self._listeners):
            try:
                listener(old_state, new_state)
            except Exception as e:
                logger.error(f"State listener failed: {e}")

        return transition
