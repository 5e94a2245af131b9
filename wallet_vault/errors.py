"""Stable error taxonomy for the wallet vault.

Every failure the vault can report carries a machine-readable ``kind`` so
that callers branch on *what went wrong* (request access, re-authenticate,
contact an admin) instead of parsing messages.

Primitive components (cipher, wrapper, deriver) raise ``VaultError``
subclasses. The orchestration layer converts them into ``Result`` values
(``Ok`` / ``Err``) so every caller has to handle each failure kind
explicitly.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, TypeVar, Union


class ErrorKind(str, Enum):
    """Stable identifiers for vault failures."""

    DERIVATION_ERROR = "DERIVATION_ERROR"
    CONVERSION_ERROR = "CONVERSION_ERROR"
    ACCESS_DENIED = "ACCESS_DENIED"
    INTEGRITY_CHECK_FAILED = "INTEGRITY_CHECK_FAILED"
    NO_ACCESS = "NO_ACCESS"
    PARTIAL_WRITE_FAILURE = "PARTIAL_WRITE_FAILURE"
    ENCODING_ERROR = "ENCODING_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNKNOWN_RECIPIENT = "UNKNOWN_RECIPIENT"
    NO_RECIPIENTS = "NO_RECIPIENTS"
    USER_DECLINED = "USER_DECLINED"
    WALLET_UNAVAILABLE = "WALLET_UNAVAILABLE"
    SESSION_LOCKED = "SESSION_LOCKED"
    STORAGE_ERROR = "STORAGE_ERROR"
    SECRET_EXISTS = "SECRET_EXISTS"
    INVALID_SECRET = "INVALID_SECRET"


class VaultError(Exception):
    """Base vault exception with a stable error kind."""

    kind: ErrorKind = ErrorKind.STORAGE_ERROR

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def as_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
        }
        if self.details:
            d["details"] = self.details
        return d

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class DerivationError(VaultError):
    """Signature input is malformed or too short to derive key material."""

    kind = ErrorKind.DERIVATION_ERROR


class ConversionError(VaultError):
    """A wallet public key could not be turned into an X25519 key."""

    kind = ErrorKind.CONVERSION_ERROR


class AccessDenied(VaultError):
    """Key material does not open the wrapped key it was presented for."""

    kind = ErrorKind.ACCESS_DENIED


WrongKey = AccessDenied


class IntegrityCheckFailed(VaultError):
    """AEAD authentication failed: wrong key, tampered data or bad IV/tag."""

    kind = ErrorKind.INTEGRITY_CHECK_FAILED


class NoAccess(VaultError):
    """The wallet holds no wrapped key for the secret."""

    kind = ErrorKind.NO_ACCESS


class PartialWriteFailure(VaultError):
    """Not every recipient could be wrapped or persisted; nothing was kept."""

    kind = ErrorKind.PARTIAL_WRITE_FAILURE


class EncodingError(VaultError):
    """A binary field is not valid in the configured encoding."""

    kind = ErrorKind.ENCODING_ERROR


class SecretNotFound(VaultError):
    kind = ErrorKind.NOT_FOUND


class UnknownRecipient(VaultError):
    kind = ErrorKind.UNKNOWN_RECIPIENT


class NoRecipients(VaultError):
    kind = ErrorKind.NO_RECIPIENTS


class UserDeclined(VaultError):
    kind = ErrorKind.USER_DECLINED


class WalletUnavailable(VaultError):
    kind = ErrorKind.WALLET_UNAVAILABLE


class SessionLocked(VaultError):
    """The session holds no usable key material (never unlocked, expired or disconnected)."""

    kind = ErrorKind.SESSION_LOCKED


class StorageError(VaultError):
    kind = ErrorKind.STORAGE_ERROR


class SecretExists(VaultError):
    """A secret with this name already exists in the project environment."""

    kind = ErrorKind.SECRET_EXISTS


class InvalidSecret(VaultError):
    kind = ErrorKind.INVALID_SECRET


# ---------------------------------------------------------------------------
# Result values
# ---------------------------------------------------------------------------

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome carrying ``value``."""

    value: T

    @property
    def ok(self) -> bool:
        return True

    @property
    def kind(self) -> None:
        return None

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: Any) -> T:
        return self.value

    def map(self, fn: Callable[[T], Any]) -> "Ok[Any]":
        return Ok(fn(self.value))


@dataclass(frozen=True)
class Err:
    """Failed outcome carrying the ``VaultError`` that caused it."""

    error: VaultError

    @property
    def ok(self) -> bool:
        return False

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    def unwrap(self) -> Any:
        raise self.error

    def unwrap_or(self, default: Any) -> Any:
        return default

    def map(self, fn: Callable[[Any], Any]) -> "Err":
        return self


Result = Union[Ok[T], Err]
