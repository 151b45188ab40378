"""Bounded exponential backoff for reconnect and store retries."""

import random
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class BackoffPolicy:
    """Backoff settings.

    Attributes:
        base_delay: Delay before the first retry (seconds)
        max_delay: Cap on any single delay (seconds)
        factor: Growth multiplier per consecutive failure
        jitter: Extra random fraction added to each delay (0 to factor - 1)
    """

    base_delay: float = 1.0
    max_delay: float = 60.0
    factor: float = 2.0
    jitter: float = 0.2

    def __post_init__(self) -> None:
        """Validate policy."""
        if self.base_delay <= 0:
            raise ValueError(f"base_delay must be > 0, got {self.base_delay}")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.factor < 1:
            raise ValueError(f"factor must be >= 1, got {self.factor}")
        # Larger jitter could make a delay shorter than the one before it
        if not 0 <= self.jitter <= self.factor - 1:
            raise ValueError(
                f"jitter must be between 0 and factor - 1 ({self.factor - 1}), got {self.jitter}"
            )


class Backoff:
    """Stateful delay generator for consecutive failures.

    Delays never decrease across consecutive calls and never exceed
    max_delay. reset() returns to the base delay after a success.
    """

    def __init__(
        self,
        policy: BackoffPolicy | None = None,
        rng: Callable[[], float] = random.random,
    ) -> None:
        """Initialize the backoff.

        Args:
            policy: Delay policy (defaults if not provided)
            rng: Source of uniform [0, 1) values for jitter
        """
        self._policy = policy or BackoffPolicy()
        self._rng = rng
        self._attempts = 0

    @property
    def policy(self) -> BackoffPolicy:
        """Get the delay policy."""
        return self._policy

    @property
    def attempts(self) -> int:
        """Number of delays handed out since the last reset."""
        return self._attempts

    def next_delay(self) -> float:
        """Get the delay before the next attempt and count the failure."""
        policy = self._policy
        exponent = self._attempts
        self._attempts += 1
        try:
            raw = policy.base_delay * (policy.factor ** exponent)
        except OverflowError:
            return policy.max_delay
        if raw >= policy.max_delay:
            return policy.max_delay
        return min(raw * (1 + policy.jitter * self._rng()), policy.max_delay)

    def reset(self) -> None:
        """Return to the base delay."""
        self._attempts = 0
