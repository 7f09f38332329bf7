"""
Secret codec: Base32 (RFC 4648) encoding of shared TOTP secrets.

Secrets are typed by users or read from provisioning URIs, so decoding is
lenient about case, padding and embedded whitespace, and strict about the
alphabet.
"""
import base64
import binascii
import secrets

from .exceptions import InvalidSecret

MIN_SECRET_BYTES = 10  # 80 bits, RFC 4226 section 4 R6
DEFAULT_SECRET_BYTES = 20  # 160 bits, matches the HMAC-SHA1 block output


def decode(text: str) -> bytes:
    """Decode a Base32 secret.

    Args:
        text: Base32 string, padded or un-padded, any case.

    Returns:
        Raw secret bytes.

    Raises:
        InvalidSecret: If the input is empty, uses characters outside the
            Base32 alphabet, or has invalid padding.
    """
    if not isinstance(text, str):
        raise InvalidSecret("Secret must be a Base32 string")
    cleaned = "".join(text.split()).upper()
    if not cleaned.rstrip("="):
        raise InvalidSecret("Secret cannot be empty")
    if "=" not in cleaned:
        cleaned += "=" * (-len(cleaned) % 8)
    try:
        return base64.b32decode(cleaned, casefold=True)
    except (binascii.Error, ValueError) as err:
        raise InvalidSecret(f"Invalid Base32 secret: {err}") from err


def encode(data: bytes, padding: bool = False) -> str:
    """Encode raw secret bytes as upper-case Base32."""
    encoded = base64.b32encode(bytes(data)).decode("ascii")
    if not padding:
        encoded = encoded.rstrip("=")
    return encoded


def generate(length: int = DEFAULT_SECRET_BYTES) -> bytes:
    """Generate a random secret from the OS CSPRNG.

    Raises:
        InvalidSecret: If ``length`` is below MIN_SECRET_BYTES.
    """
    if length < MIN_SECRET_BYTES:
        raise InvalidSecret(
            f"Secret length must be at least {MIN_SECRET_BYTES} bytes, "
            f"got {length}"
        )
    return secrets.token_bytes(length)
