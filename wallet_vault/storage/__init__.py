"""Persistence backends for secrets and wrapped keys."""

from .abstract import SecretStore
from .memory import MemorySecretStore
from .postgres import PostgresSecretStore

__all__ = [
    "SecretStore",
    "MemorySecretStore",
    "PostgresSecretStore",
]
