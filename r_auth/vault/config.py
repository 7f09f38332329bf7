"""
Vault Configuration: Storage locations and backend selection.

Reads settings from environment variables:
    R_AUTH_HOME             = <directory holding the vault file>
    R_AUTH_VAULT_FILE       = <vault file name, default accounts.json>
    R_AUTH_KEY_HOME         = <directory holding the fallback key file>
    R_AUTH_KEY_FILE         = <fallback key file name or absolute path, default master.key>
    R_AUTH_KEYRING_BACKEND  = auto | native | file
    R_AUTH_CIPHER_BACKEND   = aesgcm | chacha20

Security Note:
    Never log key material. Only log paths, tiers and backend names.
    The fallback key file lives in ``key_home``, never next to the vault
    file unless configured so.
"""
import os
import sys
import logging
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("r_auth.vault")

APP_NAME = "r-auth"
KEYRING_SERVICE = "r-auth"
KEYRING_ACCOUNT = "master-key"
MASTER_KEY_SIZE = 32  # 256 bits

KEYRING_BACKENDS = ("auto", "native", "file")
CIPHER_BACKENDS = ("aesgcm", "chacha20")


def default_home() -> Path:
    """Return the OS-conventional configuration directory for r-auth.

    Returns:
        ``%APPDATA%\\r-auth`` on Windows,
        ``~/Library/Application Support/r-auth`` on macOS and
        ``$XDG_CONFIG_HOME/r-auth`` (``~/.config/r-auth``) elsewhere.
    """
    if sys.platform.startswith("win"):
        base = os.environ.get("APPDATA") or str(Path.home() / "AppData" / "Roaming")
        return Path(base) / APP_NAME
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_NAME
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / APP_NAME


def default_key_home() -> Path:
    """Return the directory for the fallback key file.

    Returns:
        ``%LOCALAPPDATA%\\r-auth`` on Windows and
        ``$XDG_DATA_HOME/r-auth`` (``~/.local/share/r-auth``) elsewhere.
    """
    if sys.platform.startswith("win"):
        base = os.environ.get("LOCALAPPDATA") or str(Path.home() / "AppData" / "Local")
        return Path(base) / APP_NAME
    base = os.environ.get("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(base) / APP_NAME


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    home: Path = Field(default_factory=default_home)
    key_home: Path = Field(default_factory=default_key_home)
    vault_file: str = Field(default="accounts.json", min_length=1)
    key_file: str = Field(default="master.key", min_length=1)
    keyring_backend: str = Field(default="auto")
    cipher_backend: str = Field(default="aesgcm")
    keyring_service: str = Field(default=KEYRING_SERVICE, min_length=1)
    keyring_account: str = Field(default=KEYRING_ACCOUNT, min_length=1)

    @field_validator("keyring_backend")
    @classmethod
    def validate_keyring_backend(cls, v: str) -> str:
        """Validate key storage policy is supported."""
        v = v.lower()
        if v not in KEYRING_BACKENDS:
            raise ValueError(f"Unsupported keyring backend: {v}")
        return v

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.lower()
        if v not in CIPHER_BACKENDS:
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @field_validator("vault_file")
    @classmethod
    def validate_file_name(cls, v: str) -> str:
        """The vault file name is relative to ``home``; paths are rejected."""
        if Path(v).name != v:
            raise ValueError(f"Expected a bare file name, got {v!r}")
        return v

    @field_validator("key_file")
    @classmethod
    def validate_key_file(cls, v: str) -> str:
        """A bare name inside ``key_home``, or an absolute path."""
        if not Path(v).is_absolute() and Path(v).name != v:
            raise ValueError(f"Expected a bare file name or an absolute path, got {v!r}")
        return v

    @property
    def vault_path(self) -> Path:
        return self.home / self.vault_file

    @property
    def key_path(self) -> Path:
        path = Path(self.key_file)
        if path.is_absolute():
            return path
        return self.key_home / path

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        values: dict = {}
        home = os.environ.get("R_AUTH_HOME")
        if home:
            values["home"] = Path(home).expanduser()
        key_home = os.environ.get("R_AUTH_KEY_HOME")
        if key_home:
            values["key_home"] = Path(key_home).expanduser()
        for env_name, field in (
            ("R_AUTH_VAULT_FILE", "vault_file"),
            ("R_AUTH_KEY_FILE", "key_file"),
            ("R_AUTH_KEYRING_BACKEND", "keyring_backend"),
            ("R_AUTH_CIPHER_BACKEND", "cipher_backend"),
        ):
            raw = os.environ.get(env_name)
            if raw:
                values[field] = raw
        config = cls(**values)
        logger.debug(
            "Vault config: home=%s key_home=%s keyring=%s cipher=%s",
            config.home, config.key_home, config.keyring_backend, config.cipher_backend,
        )
        return config
