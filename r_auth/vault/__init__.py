"""Account Vault: Encrypted TOTP account storage.

Security Note (Threat Model):
    The vault file is encrypted with a master key held by the platform
    secret store (or a fallback key file). Decrypted secrets live in
    process memory while the vault is loaded; a memory dump of the process
    could expose them. This is an accepted limitation.
"""

from .config import VaultConfig
from .crypto import VaultBlob, decrypt, encrypt
from .keystore import FileKeyStore, KeyringAdapter, NativeKeyStore
from .store import AccountStore, StoreState

__all__ = [
    "AccountStore",
    "StoreState",
    "VaultConfig",
    "VaultBlob",
    "encrypt",
    "decrypt",
    "KeyringAdapter",
    "NativeKeyStore",
    "FileKeyStore",
]
