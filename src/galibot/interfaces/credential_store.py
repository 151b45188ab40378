"""Credential store interface - durable storage for one device credential."""

from abc import ABC, abstractmethod

from galibot.interfaces.events import DeviceCredential


class CredentialStore(ABC):
    """Abstract base class for credential backing stores.

    Implementations raise StoreUnavailable when the backing store cannot be
    reached. An empty store is not an error: get() returns None.
    """

    @abstractmethod
    async def open(self) -> None:
        """Connect to the backing store and prepare its schema."""

    @abstractmethod
    async def close(self) -> None:
        """Release backing store connections."""

    @abstractmethod
    async def get(self) -> DeviceCredential | None:
        """Read the stored credential, or None if the device was never paired."""

    @abstractmethod
    async def put(self, credential: DeviceCredential) -> None:
        """Store the credential, atomically replacing any previous one."""

    @abstractmethod
    async def delete(self) -> None:
        """Remove the stored credential."""
