"""
Tests for signature-based key derivation and wallet signature checks.
"""
import pytest
from nacl.public import PrivateKey

from wallet_vault import KeypairSigner, KeyOrigin, VaultConfig
from wallet_vault.errors import AccessDenied, DerivationError
from wallet_vault.vault.conversion import public_key_to_x25519
from wallet_vault.vault.derivation import SignatureKeyDeriver, verify_wallet_signature


class TestVaultKey:
    """PBKDF2 vault key derivation."""

    def test_deterministic(self, deriver, alice, sign):
        sig = sign(alice)
        assert deriver.derive_vault_key(deriver.message, sig) == deriver.derive_vault_key(deriver.message, sig)

    def test_length(self, deriver, alice, sign):
        assert len(deriver.derive_vault_key(deriver.message, sign(alice))) == 32

    def test_different_wallets_differ(self, deriver, alice, bob, sign):
        assert deriver.derive_vault_key(deriver.message, sign(alice)) != deriver.derive_vault_key(deriver.message, sign(bob))

    def test_different_message_differs(self, deriver, alice, sign):
        sig = sign(alice)
        assert deriver.derive_vault_key(b"other", sig) != deriver.derive_vault_key(deriver.message, sig)

    def test_salt_changes_key(self, alice, sign):
        sig = sign(alice)
        default = SignatureKeyDeriver(VaultConfig())
        salted = SignatureKeyDeriver(VaultConfig(kdf_salt="another-app-salt"))
        assert default.derive_vault_key(default.message, sig) != salted.derive_vault_key(salted.message, sig)

    @pytest.mark.parametrize("signature", [b"", b"\x01" * 32, b"\x01" * 63, b"\x01" * 65])
    def test_malformed_signature(self, deriver, signature):
        with pytest.raises(DerivationError):
            deriver.derive_vault_key(deriver.message, signature)

    def test_non_bytes_signature(self, deriver):
        with pytest.raises(DerivationError):
            deriver.derive_vault_key(deriver.message, "not-bytes")


class TestRecipientKeypair:
    """X25519 keypair seeded by the signature."""

    def test_deterministic(self, deriver, alice, sign):
        sig = sign(alice)
        first = deriver.derive_recipient_keypair(sig)
        second = deriver.derive_recipient_keypair(sig)
        assert first.public_key == second.public_key
        assert first.private_key == second.private_key

    def test_seed_is_first_32_bytes(self, deriver, alice, sign):
        sig = sign(alice)
        keypair = deriver.derive_recipient_keypair(sig)
        assert keypair.private_key == sig[:32]
        assert keypair.public_key == bytes(PrivateKey(sig[:32]).public_key)
        assert keypair.origin is KeyOrigin.SIGNATURE

    def test_wallets_get_distinct_keypairs(self, deriver, alice, bob, sign):
        assert deriver.derive_recipient_keypair(sign(alice)).public_key != deriver.derive_recipient_keypair(sign(bob)).public_key

    def test_short_signature(self, deriver):
        with pytest.raises(DerivationError):
            deriver.derive_recipient_keypair(b"\x00" * 16)

    def test_repr_hides_private_key(self, deriver, alice, sign):
        keypair = deriver.derive_recipient_keypair(sign(alice))
        assert keypair.private_key.hex() not in repr(keypair)


class TestSigningKeyKeypair:
    """Keypairs converted from a real Ed25519 signing key."""

    def test_matches_public_key_conversion(self, alice):
        keypair = alice.converted_keypair()
        assert keypair.public_key == public_key_to_x25519(alice.public_key)
        assert keypair.origin is KeyOrigin.SIGNING_KEY


class TestSignatureVerification:
    """Ed25519 verification of wallet signatures."""

    def test_valid(self, deriver, alice, sign):
        verify_wallet_signature(deriver.message, sign(alice), alice.address)

    def test_signature_from_other_wallet(self, deriver, alice, bob, sign):
        with pytest.raises(AccessDenied):
            verify_wallet_signature(deriver.message, sign(bob), alice.address)

    def test_signature_over_other_message(self, deriver, alice):
        with pytest.raises(AccessDenied):
            verify_wallet_signature(deriver.message, alice.sign(b"something else"), alice.address)

    def test_invalid_address(self, deriver, alice, sign):
        with pytest.raises(AccessDenied):
            verify_wallet_signature(deriver.message, sign(alice), "0OIl-not-base58")

    def test_malformed_signature(self, deriver, alice):
        with pytest.raises(DerivationError):
            verify_wallet_signature(deriver.message, b"\x00" * 10, alice.address)

    def test_deriver_verify_uses_configured_message(self, alice):
        config = VaultConfig(derivation_message="custom unlock message")
        deriver = SignatureKeyDeriver(config)
        deriver.verify(alice.sign(b"custom unlock message"), alice.address)
        with pytest.raises(AccessDenied):
            deriver.verify(alice.sign(b"auth-to-decrypt"), alice.address)

    def test_keypair_signer_address_round_trip(self):
        signer = KeypairSigner()
        verify_wallet_signature(b"m", signer.sign(b"m"), signer.address)
