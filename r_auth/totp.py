"""
TOTP engine: RFC 6238 codes on top of the RFC 4226 HOTP construction.

All functions are pure: the same inputs always produce the same code.
Timestamps are seconds since the Unix epoch (UTC).
"""
import hmac
import struct
from typing import Union

from .models import ALLOWED_DIGITS, Algorithm

DEFAULT_PERIOD = 30
DEFAULT_DIGITS = 6


def _check_params(digits: int, period: int = DEFAULT_PERIOD) -> None:
    if digits not in ALLOWED_DIGITS:
        raise ValueError(f"digits must be one of {ALLOWED_DIGITS}, got {digits}")
    if period <= 0:
        raise ValueError(f"period must be positive, got {period}")


def hotp(
    secret: bytes,
    counter: int,
    digits: int = DEFAULT_DIGITS,
    algorithm: Union[Algorithm, str] = Algorithm.SHA1,
) -> str:
    """Compute an HOTP value (RFC 4226 section 5).

    Args:
        secret: Raw shared secret.
        counter: Moving factor, encoded as an 8-byte big-endian integer.
        digits: Code length (6, 7 or 8).
        algorithm: HMAC hash function.

    Returns:
        Zero-padded decimal code of length ``digits``.
    """
    _check_params(digits)
    if counter < 0:
        raise ValueError(f"counter must be non-negative, got {counter}")
    algorithm = Algorithm(algorithm)
    digest = hmac.new(
        bytes(secret), struct.pack(">Q", counter), algorithm.digestmod,
    ).digest()
    # Dynamic truncation, RFC 4226 section 5.4
    offset = digest[-1] & 0x0F
    value = struct.unpack(">I", digest[offset:offset + 4])[0] & 0x7FFFFFFF
    return str(value % 10 ** digits).zfill(digits)


def compute(
    secret: bytes,
    timestamp: Union[int, float],
    period: int = DEFAULT_PERIOD,
    digits: int = DEFAULT_DIGITS,
    algorithm: Union[Algorithm, str] = Algorithm.SHA1,
) -> str:
    """Compute the TOTP code valid at ``timestamp`` (RFC 6238 section 4.2)."""
    _check_params(digits, period)
    counter = int(timestamp) // period
    return hotp(secret, counter, digits=digits, algorithm=algorithm)


def remaining_validity(timestamp: Union[int, float], period: int = DEFAULT_PERIOD) -> int:
    """Seconds until the code valid at ``timestamp`` rolls over.

    Always within ``1..period``.
    """
    return period - (int(timestamp) % period)
