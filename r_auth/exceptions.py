"""
r-auth error taxonomy.

Every error carries a stable ``category`` string so callers (the CLI,
scripts, tests) can tell "not initialized" from "corrupted vault" from
"duplicate account" without parsing messages.
"""


class RAuthError(Exception):
    """Base class for all r-auth errors."""

    category: str = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__doc__)
        self.message = message or self.__doc__


class InvalidSecret(RAuthError):
    """Secret is not valid Base32 or is too short."""

    category = "invalid-secret"


class InvalidAccount(RAuthError):
    """Account label or TOTP parameters are invalid."""

    category = "invalid-account"


class DuplicateAccount(RAuthError):
    """An account with this label already exists."""

    category = "duplicate-account"

    def __init__(self, label: str) -> None:
        super().__init__(f"Account '{label}' already exists")
        self.label = label


class AccountNotFound(RAuthError):
    """No account with this label exists."""

    category = "account-not-found"

    def __init__(self, label: str) -> None:
        super().__init__(f"Account '{label}' not found")
        self.label = label


class AlreadyInitialized(RAuthError):
    """Vault already exists. Run 'reset' before initializing again."""

    category = "already-initialized"


class UninitializedVault(RAuthError):
    """Vault is not initialized. Please run 'init' first."""

    category = "uninitialized"


class KeyringError(RAuthError):
    """Master key storage failure."""

    category = "keyring"


class KeyringUnavailable(KeyringError):
    """No secret store (native keyring or key file) is reachable."""

    category = "keyring-unavailable"


class KeyringAccessDenied(KeyringError):
    """The secret store refused access to the master key."""

    category = "keyring-access-denied"


class DecryptionFailed(RAuthError):
    """Vault could not be decrypted: wrong key or corrupted file."""

    category = "decryption-failed"


class VaultIoError(RAuthError):
    """Vault file could not be read or written."""

    category = "vault-io"
