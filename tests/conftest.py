"""Shared fixtures for the wallet vault tests."""
import pytest

from wallet_vault import (
    AccessProtocol,
    KeypairSigner,
    MemorySecretStore,
    StaticMemberDirectory,
    VaultConfig,
)
from wallet_vault.vault.derivation import SignatureKeyDeriver


PROJECT = "proj-1"
ENVIRONMENT = "production"


@pytest.fixture
def config():
    return VaultConfig()


@pytest.fixture
def deriver(config):
    return SignatureKeyDeriver(config)


@pytest.fixture
def alice():
    return KeypairSigner.from_seed(b"\x01" * 32)


@pytest.fixture
def bob():
    return KeypairSigner.from_seed(b"\x02" * 32)


@pytest.fixture
def carol():
    return KeypairSigner.from_seed(b"\x03" * 32)


@pytest.fixture
def sign(config):
    """Signature of a signer over the derivation message."""
    def _sign(signer):
        return signer.sign(config.message_bytes)
    return _sign


@pytest.fixture
def directory():
    return StaticMemberDirectory()


@pytest.fixture
def register(directory, deriver, sign):
    """Add a signer to a project with its signature-derived encryption key."""
    def _register(signer, project_id=PROJECT):
        keypair = deriver.derive_recipient_keypair(sign(signer))
        return directory.add_member(project_id, signer.address, keypair.public_key)
    return _register


@pytest.fixture
def store():
    return MemorySecretStore()


@pytest.fixture
def protocol(store, directory, config):
    return AccessProtocol(store, directory, config)
