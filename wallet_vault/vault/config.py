"""
Vault Configuration — Derivation parameters and validated settings.

Reads settings from environment variables:
    WALLET_VAULT_DERIVATION_MESSAGE = <message every wallet signs to unlock>
    WALLET_VAULT_KDF_SALT = <application-specific PBKDF2 salt>
    WALLET_VAULT_KDF_ITERATIONS = <integer, >= 100000>
    WALLET_VAULT_ENCODING = hex | base64
    WALLET_VAULT_VERIFY_SIGNATURES = true | false
    WALLET_VAULT_ALLOW_CONVERTED_WRAPPING = true | false
    WALLET_VAULT_SESSION_TTL = <seconds, >= 60>

Security Note:
    Changing the derivation message or salt makes every previously derived
    key unreproducible. Treat both as part of the data format.
"""
import os
import logging

from pydantic import BaseModel, Field, field_validator

from ..encoding import BinaryCodec, get_codec

logger = logging.getLogger("wallet_vault.vault")

DEFAULT_DERIVATION_MESSAGE = "auth-to-decrypt"
DEFAULT_KDF_SALT = "wallet-vault-salt"
MIN_KDF_ITERATIONS = 100_000

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean flag from the environment.

    Raises:
        ValueError: If the variable is set to something that is not a boolean.
    """
    raw = os.environ.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    derivation_message: str = Field(default=DEFAULT_DERIVATION_MESSAGE, min_length=1)
    kdf_salt: str = Field(default=DEFAULT_KDF_SALT, min_length=8)
    kdf_iterations: int = Field(default=MIN_KDF_ITERATIONS, ge=MIN_KDF_ITERATIONS)
    encoding: str = Field(default="base64")
    verify_signatures: bool = True
    allow_converted_wrapping: bool = True
    session_ttl: int = Field(default=3600, ge=60)

    model_config = {"frozen": True}

    @field_validator("encoding")
    @classmethod
    def validate_encoding(cls, v: str) -> str:
        """Validate the binary encoding is supported."""
        v = v.lower()
        if v not in ("hex", "base64"):
            raise ValueError(f"Unsupported encoding: {v}")
        return v

    @property
    def message_bytes(self) -> bytes:
        return self.derivation_message.encode("utf-8")

    @property
    def salt_bytes(self) -> bytes:
        return self.kdf_salt.encode("utf-8")

    @property
    def codec(self) -> BinaryCodec:
        return get_codec(self.encoding)

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        values: dict = {}
        message = os.environ.get("WALLET_VAULT_DERIVATION_MESSAGE")
        if message is not None:
            values["derivation_message"] = message
        salt = os.environ.get("WALLET_VAULT_KDF_SALT")
        if salt is not None:
            values["kdf_salt"] = salt
        iterations = os.environ.get("WALLET_VAULT_KDF_ITERATIONS")
        if iterations is not None:
            values["kdf_iterations"] = int(iterations)
        encoding = os.environ.get("WALLET_VAULT_ENCODING")
        if encoding is not None:
            values["encoding"] = encoding
        ttl = os.environ.get("WALLET_VAULT_SESSION_TTL")
        if ttl is not None:
            values["session_ttl"] = int(ttl)
        values["verify_signatures"] = _env_bool(
            "WALLET_VAULT_VERIFY_SIGNATURES", True
        )
        values["allow_converted_wrapping"] = _env_bool(
            "WALLET_VAULT_ALLOW_CONVERTED_WRAPPING", True
        )
        config = cls(**values)
        logger.debug(
            "Vault config loaded: encoding=%s iterations=%d verify=%s",
            config.encoding, config.kdf_iterations, config.verify_signatures,
        )
        return config
