"""
Binary Codecs — one fixed text encoding for every binary field.

Ciphertexts, IVs, tags, nonces and keys leave the vault as text. A deployment
picks exactly one encoding (hex or base64) and every field uses it. Decoding
is strict: a value that is not valid in the configured alphabet raises
``EncodingError`` instead of producing bytes that later fail as an opaque
integrity error.
"""
import base64
import binascii
import re

import base58

from .errors import EncodingError

_HEX_PATTERN = re.compile(r"^(?:[0-9a-f]{2})*$")


class BinaryCodec:
    """Encode/decode bytes to a single text alphabet."""

    name: str = ""

    def encode(self, data: bytes) -> str:
        raise NotImplementedError

    def decode(self, value: str, field: str = "value") -> bytes:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class HexCodec(BinaryCodec):
    name = "hex"

    def encode(self, data: bytes) -> str:
        return data.hex()

    def decode(self, value: str, field: str = "value") -> bytes:
        if not isinstance(value, str) or not _HEX_PATTERN.match(value):
            raise EncodingError(
                f"{field} is not lowercase hex", field=field, encoding=self.name
            )
        return bytes.fromhex(value)


class Base64Codec(BinaryCodec):
    name = "base64"

    def encode(self, data: bytes) -> str:
        return base64.b64encode(data).decode("ascii")

    def decode(self, value: str, field: str = "value") -> bytes:
        if not isinstance(value, str):
            raise EncodingError(
                f"{field} must be a base64 string", field=field, encoding=self.name
            )
        try:
            return base64.b64decode(value.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as err:
            raise EncodingError(
                f"{field} is not valid base64", field=field, encoding=self.name
            ) from err


_CODECS: dict[str, BinaryCodec] = {
    "hex": HexCodec(),
    "base64": Base64Codec(),
}


def get_codec(name: str) -> BinaryCodec:
    """Return the codec registered under ``name``.

    Raises:
        EncodingError: If no codec has that name.
    """
    try:
        return _CODECS[name.lower()]
    except KeyError:
        raise EncodingError(
            f"Unsupported encoding: {name}", encoding=name
        ) from None


# ---------------------------------------------------------------------------
# Wallet addresses
# ---------------------------------------------------------------------------

def decode_wallet_address(address: str) -> bytes:
    """Decode a base58 wallet address into its raw public key bytes.

    Raises:
        EncodingError: If the address is not base58.
    """
    try:
        return base58.b58decode(address)
    except ValueError as err:
        raise EncodingError(
            "wallet address is not valid base58", field="wallet_address"
        ) from err


def encode_wallet_address(public_key: bytes) -> str:
    return base58.b58encode(public_key).decode("ascii")
