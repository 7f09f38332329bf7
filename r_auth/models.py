"""
Data models for the account vault.

Accounts keep their secret as raw bytes in memory; when dumped in JSON mode
the secret is written as un-padded Base32, and Base32 strings are decoded
back into bytes on validation.
"""
import enum
import hashlib
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import (
    BaseModel,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

from . import codec

VAULT_FORMAT_VERSION = 1
ALLOWED_DIGITS = (6, 7, 8)


class Algorithm(str, enum.Enum):
    """HMAC hash function used for code generation."""

    SHA1 = "SHA1"
    SHA256 = "SHA256"
    SHA512 = "SHA512"

    @classmethod
    def _missing_(cls, value: object) -> Optional["Algorithm"]:
        if isinstance(value, str):
            normalized = value.upper().replace("-", "")
            for member in cls:
                if member.value == normalized:
                    return member
        return None

    @property
    def digestmod(self) -> Callable[..., Any]:
        return getattr(hashlib, self.value.lower())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountSummary(BaseModel):
    """Account metadata, safe to display: never carries the secret."""

    label: str
    algorithm: Algorithm = Algorithm.SHA1
    digits: int = 6
    period: int = 30
    issuer: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class Account(AccountSummary):
    """A TOTP account with its decoded shared secret."""

    secret: bytes = Field(repr=False)

    @field_validator("label")
    @classmethod
    def validate_label(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Account label cannot be empty")
        return v

    @field_validator("secret", mode="before")
    @classmethod
    def decode_secret(cls, v: Any) -> Any:
        """Accept Base32 text (as stored in the vault) or raw bytes."""
        if isinstance(v, str):
            return codec.decode(v)
        return v

    @field_validator("secret")
    @classmethod
    def validate_secret(cls, v: bytes) -> bytes:
        if len(v) < codec.MIN_SECRET_BYTES:
            raise ValueError(
                f"Secret must be at least {codec.MIN_SECRET_BYTES} bytes"
            )
        return v

    @field_validator("digits")
    @classmethod
    def validate_digits(cls, v: int) -> int:
        if v not in ALLOWED_DIGITS:
            raise ValueError(f"digits must be one of {ALLOWED_DIGITS}, got {v}")
        return v

    @field_validator("period")
    @classmethod
    def validate_period(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"period must be positive, got {v}")
        return v

    @field_serializer("secret", when_used="json")
    def serialize_secret(self, v: bytes) -> str:
        return codec.encode(v)

    def summary(self) -> AccountSummary:
        return AccountSummary(
            label=self.label,
            algorithm=self.algorithm,
            digits=self.digits,
            period=self.period,
            issuer=self.issuer,
            created_at=self.created_at,
        )


class Vault(BaseModel):
    """Ordered collection of accounts keyed by label.

    Insertion order of ``accounts`` is the listing order.
    """

    format_version: int = VAULT_FORMAT_VERSION
    accounts: dict[str, Account] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_labels(self) -> "Vault":
        """Ensure each mapping key matches its account label."""
        for key, account in self.accounts.items():
            if key != account.label:
                raise ValueError(
                    f"Vault key '{key}' does not match account label "
                    f"'{account.label}'"
                )
        return self


class TotpCode(BaseModel):
    """A generated code and how long it stays valid."""

    label: str
    value: str
    remaining_seconds: int
