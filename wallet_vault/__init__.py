"""Wallet Vault.

Team secrets readable only by wallet-authenticated members.
"""
from .version import __version__
from .errors import (
    ErrorKind,
    VaultError,
    DerivationError,
    ConversionError,
    AccessDenied,
    WrongKey,
    IntegrityCheckFailed,
    NoAccess,
    PartialWriteFailure,
    EncodingError,
    SecretNotFound,
    UnknownRecipient,
    NoRecipients,
    UserDeclined,
    WalletUnavailable,
    SessionLocked,
    StorageError,
    SecretExists,
    InvalidSecret,
    Ok,
    Err,
    Result,
)
from .models import (
    Secret,
    SecretInfo,
    WrappedKeyRecord,
    Member,
    DerivedKeypair,
    WrapMethod,
    KeyOrigin,
)
from .vault import AccessProtocol, VaultConfig, SignatureKeyDeriver, rotate_secret_key
from .session import WalletSession
from .wallet import WalletSigner, KeypairSigner
from .directory import MemberDirectory, StaticMemberDirectory
from .storage import SecretStore, MemorySecretStore, PostgresSecretStore

__all__ = [
    "__version__",
    "ErrorKind",
    "VaultError",
    "DerivationError",
    "ConversionError",
    "AccessDenied",
    "WrongKey",
    "IntegrityCheckFailed",
    "NoAccess",
    "PartialWriteFailure",
    "EncodingError",
    "SecretNotFound",
    "UnknownRecipient",
    "NoRecipients",
    "UserDeclined",
    "WalletUnavailable",
    "SessionLocked",
    "StorageError",
    "SecretExists",
    "InvalidSecret",
    "Ok",
    "Err",
    "Result",
    "Secret",
    "SecretInfo",
    "WrappedKeyRecord",
    "Member",
    "DerivedKeypair",
    "WrapMethod",
    "KeyOrigin",
    "AccessProtocol",
    "VaultConfig",
    "SignatureKeyDeriver",
    "rotate_secret_key",
    "WalletSession",
    "WalletSigner",
    "KeypairSigner",
    "MemberDirectory",
    "StaticMemberDirectory",
    "SecretStore",
    "MemorySecretStore",
    "PostgresSecretStore",
]
