"""Store module - Credential store implementations."""

from galibot.interfaces.credential_store import CredentialStore
from galibot.store.postgres_store import PostgresCredentialStore

__all__ = [
    "CredentialStore",
    "PostgresCredentialStore",
]
