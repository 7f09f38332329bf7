"""r-auth.

Local TOTP credential vault: RFC 6238 / RFC 4226 codes from seeds kept
encrypted at rest, with the master key held by the platform secret store.
"""
from .version import __version__
from .authenticator import Authenticator
from .models import Account, AccountSummary, Algorithm, TotpCode
from .vault import AccountStore, VaultConfig
from .exceptions import (
    RAuthError,
    InvalidSecret,
    InvalidAccount,
    DuplicateAccount,
    AccountNotFound,
    AlreadyInitialized,
    UninitializedVault,
    KeyringError,
    KeyringUnavailable,
    KeyringAccessDenied,
    DecryptionFailed,
    VaultIoError,
)

__all__ = [
    "__version__",
    "Authenticator",
    "Account",
    "AccountSummary",
    "Algorithm",
    "TotpCode",
    "AccountStore",
    "VaultConfig",
    "RAuthError",
    "InvalidSecret",
    "InvalidAccount",
    "DuplicateAccount",
    "AccountNotFound",
    "AlreadyInitialized",
    "UninitializedVault",
    "KeyringError",
    "KeyringUnavailable",
    "KeyringAccessDenied",
    "DecryptionFailed",
    "VaultIoError",
]
