"""
Vault Crypto Core: Key derivation, encryption/decryption, and serialization.

Implements the at-rest encryption of the account vault:
    HKDF(master_key, "r-auth-vault-v{N}") → AEAD(AES-GCM | ChaCha20-Poly1305)
    associated data = "r-auth-vault:v{N}:{cipher}"

The on-disk envelope is a JSON document:
    {"format_version": N, "cipher": "...", "nonce": b64, "ciphertext": b64}

Security Note:
    Never log plaintext or ciphertext values.
    Nonces are random 96-bit, fresh for every encryption.
    Key material is handled as ``bytearray`` and zeroed by ``wiped()``;
    immutable copies made inside the AEAD implementation are outside our
    control.
"""
import os
import base64
import binascii
import logging
import secrets
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Union

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305
from pydantic import ValidationError

from ..exceptions import DecryptionFailed, InvalidSecret
from ..models import VAULT_FORMAT_VERSION, Vault
from .config import MASTER_KEY_SIZE

logger = logging.getLogger("r_auth.vault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16

CIPHERS: dict[str, type] = {
    "aesgcm": AESGCM,
    "chacha20": ChaCha20Poly1305,
}

KeyBytes = Union[bytes, bytearray]


# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------

def new_master_key() -> bytearray:
    """Generate a random 256-bit master key as a wipeable buffer."""
    return bytearray(secrets.token_bytes(MASTER_KEY_SIZE))


def wipe(buffer: bytearray) -> None:
    """Overwrite a key buffer with zeros in place."""
    for i in range(len(buffer)):
        buffer[i] = 0


@contextmanager
def wiped(buffer: bytearray) -> Iterator[bytearray]:
    """Yield ``buffer`` and zero it on exit, including on exceptions."""
    try:
        yield buffer
    finally:
        wipe(buffer)


def derive_key(master_key: KeyBytes, format_version: int) -> bytearray:
    """Derive the 32-byte vault encryption key using HKDF-SHA256.

    Args:
        master_key: Raw master key bytes.
        format_version: Vault format version, used for domain separation.

    Returns:
        32-byte derived key, as a wipeable buffer.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=MASTER_KEY_SIZE,
        salt=None,  # deterministic: the nonce provides per-message freshness
        info=f"r-auth-vault-v{format_version}".encode("utf-8"),
    )
    return bytearray(hkdf.derive(master_key))


def _associated_data(format_version: int, cipher: str) -> bytes:
    return f"r-auth-vault:v{format_version}:{cipher}".encode("utf-8")


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VaultBlob:
    """Encrypted vault as stored on disk."""

    format_version: int
    cipher: str
    nonce: bytes
    ciphertext: bytes

    def dumps(self) -> bytes:
        """Serialize the envelope to JSON bytes."""
        return orjson.dumps(
            {
                "format_version": self.format_version,
                "cipher": self.cipher,
                "nonce": base64.b64encode(self.nonce).decode("ascii"),
                "ciphertext": base64.b64encode(self.ciphertext).decode("ascii"),
            },
            option=orjson.OPT_INDENT_2,
        )

    @classmethod
    def loads(cls, data: bytes) -> "VaultBlob":
        """Parse a JSON envelope.

        Raises:
            DecryptionFailed: If the document is not a well-formed envelope.
        """
        try:
            parsed = orjson.loads(data)
            return cls(
                format_version=int(parsed["format_version"]),
                cipher=str(parsed["cipher"]),
                nonce=base64.b64decode(parsed["nonce"], validate=True),
                ciphertext=base64.b64decode(parsed["ciphertext"], validate=True),
            )
        except (orjson.JSONDecodeError, KeyError, TypeError, ValueError, binascii.Error) as err:
            raise DecryptionFailed(f"Vault file is malformed: {err}") from err


# ---------------------------------------------------------------------------
# Encryption
# ---------------------------------------------------------------------------

def encrypt(
    plaintext: bytes,
    master_key: KeyBytes,
    cipher: str = "aesgcm",
    format_version: int = VAULT_FORMAT_VERSION,
) -> VaultBlob:
    """Encrypt a serialized vault.

    Args:
        plaintext: Serialized vault bytes.
        master_key: Raw 32-byte master key.
        cipher: AEAD backend name (``aesgcm`` or ``chacha20``).
        format_version: Version bound into the associated data.

    Returns:
        VaultBlob with a fresh random nonce.
    """
    cipher_cls = CIPHERS[cipher]
    nonce = os.urandom(NONCE_SIZE)
    with wiped(derive_key(master_key, format_version)) as key:
        ct = cipher_cls(key).encrypt(
            nonce, plaintext, _associated_data(format_version, cipher),
        )
    return VaultBlob(
        format_version=format_version,
        cipher=cipher,
        nonce=nonce,
        ciphertext=ct,
    )


def decrypt(blob: VaultBlob, master_key: KeyBytes) -> bytes:
    """Decrypt and authenticate a vault blob.

    Returns:
        Decrypted plaintext bytes.

    Raises:
        DecryptionFailed: Wrong key, tampered or truncated data, unknown
            format version or cipher.
    """
    if blob.format_version != VAULT_FORMAT_VERSION:
        raise DecryptionFailed(
            f"Unsupported vault format version {blob.format_version}"
        )
    cipher_cls = CIPHERS.get(blob.cipher)
    if cipher_cls is None:
        raise DecryptionFailed(f"Unsupported vault cipher {blob.cipher!r}")
    if len(blob.nonce) != NONCE_SIZE or len(blob.ciphertext) < TAG_SIZE:
        raise DecryptionFailed("Vault ciphertext is truncated")
    with wiped(derive_key(master_key, blob.format_version)) as key:
        try:
            return cipher_cls(key).decrypt(
                blob.nonce,
                blob.ciphertext,
                _associated_data(blob.format_version, blob.cipher),
            )
        except InvalidTag as err:
            logger.warning(
                "Vault authentication failed (cipher=%s, format v%d)",
                blob.cipher, blob.format_version,
            )
            raise DecryptionFailed(
                "Vault authentication failed: wrong master key or corrupted file"
            ) from err


# ---------------------------------------------------------------------------
# Vault serialization
# ---------------------------------------------------------------------------

def serialize_vault(vault: Vault) -> bytes:
    """Serialize a Vault to orjson bytes (secrets as Base32)."""
    return orjson.dumps(vault.model_dump(mode="json"))


def deserialize_vault(data: bytes) -> Vault:
    """Deserialize bytes produced by ``serialize_vault``.

    Raises:
        DecryptionFailed: If the authenticated payload is not a valid vault.
    """
    try:
        vault = Vault.model_validate(orjson.loads(data))
    except (orjson.JSONDecodeError, ValidationError, InvalidSecret) as err:
        raise DecryptionFailed(f"Vault payload is invalid: {err}") from err
    if vault.format_version != VAULT_FORMAT_VERSION:
        raise DecryptionFailed(
            f"Unsupported vault payload version {vault.format_version}"
        )
    return vault
