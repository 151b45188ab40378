"""Single-slot cell holding only the most recent value."""

import asyncio
from typing import Generic, TypeVar

T = TypeVar("T")


class LatestValue(Generic[T]):
    """Versioned cell where each set() replaces the previous value.

    Readers that fall behind skip straight to the newest value instead of
    working through a backlog.
    """

    def __init__(self) -> None:
        self._value: T | None = None
        self._version = 0
        self._changed = asyncio.Event()

    @property
    def version(self) -> int:
        """Number of values set so far."""
        return self._version

    def get(self) -> tuple[int, T | None]:
        """Get (version, value); version 0 means nothing was set."""
        return self._version, self._value

    def set(self, value: T) -> int:
        """Replace the value and wake waiters.

        Returns:
            The new version
        """
        self._value = value
        self._version += 1
        self._changed.set()
        return self._version

    async def wait_newer(
        self, seen_version: int, timeout: float | None = None
    ) -> tuple[int, T | None]:
        """Wait for a value newer than ``seen_version``.

        Args:
            seen_version: Last version the caller handled
            timeout: Maximum seconds to wait (None waits forever)

        Returns:
            (version, value) of the newest value

        Raises:
            asyncio.TimeoutError: If nothing newer arrives in time
        """
        while self._version <= seen_version:
            self._changed.clear()
            await asyncio.wait_for(self._changed.wait(), timeout)
        return self._version, self._value
