"""
AccountStore: Encrypted, persistent collection of TOTP accounts.

Provides the vault lifecycle used by the authenticator:
- ``init()``: create the master key (if needed) and an empty vault
- ``load()``: decrypt the vault file into memory
- ``add(label, secret)`` / ``remove(label)``: mutate and persist
- ``list()`` / ``get(label)`` / ``get_secret(label)``: read accounts
- ``save()``: encrypt and atomically replace the vault file
- ``reset()``: delete the master key and the vault file

Security Note:
    Never log secrets, codes or key material. Only log labels, paths,
    key store tiers and operations. The master key is borrowed from the
    KeyringAdapter for a single encrypt/decrypt and zeroed afterwards.
"""
import os
import enum
import logging
import tempfile
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from .. import codec
from ..exceptions import (
    AccountNotFound,
    AlreadyInitialized,
    DuplicateAccount,
    InvalidAccount,
    InvalidSecret,
    UninitializedVault,
    VaultIoError,
)
from ..models import Account, AccountSummary, Algorithm, Vault
from .config import VaultConfig
from .crypto import (
    VaultBlob,
    decrypt,
    deserialize_vault,
    encrypt,
    serialize_vault,
)
from .keystore import KeyringAdapter

logger = logging.getLogger("r_auth.vault")

VAULT_FILE_MODE = 0o600


class StoreState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOADED = "loaded"
    MODIFIED = "modified"
    SAVED = "saved"


class AccountStore:
    """Encrypted account vault bound to one vault file.

    The store is an explicit context object: callers create one per
    invocation and pass it around, there is no module-level state.

    Args:
        config: Storage locations and cipher selection.
        keys: Master key custody; built from ``config`` if omitted.
    """

    def __init__(
        self,
        config: VaultConfig,
        keys: Optional[KeyringAdapter] = None,
    ):
        self.config = config
        self.keys = keys if keys is not None else KeyringAdapter.from_config(config)
        self._vault: Optional[Vault] = None
        self._state = StoreState.UNINITIALIZED

    @property
    def path(self) -> Path:
        return self.config.vault_path

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def loaded(self) -> bool:
        return self._vault is not None

    def exists(self) -> bool:
        """True if a vault file is present on disk."""
        return self.path.exists()

    def _require_vault(self) -> Vault:
        if self._vault is None:
            raise UninitializedVault()
        return self._vault

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self) -> str:
        """Create a new empty vault.

        Returns:
            Name of the key store tier holding the master key.

        Raises:
            AlreadyInitialized: If a vault file already exists.
        """
        if self.exists():
            raise AlreadyInitialized()
        tier = self.keys.ensure_master_key()
        self._vault = Vault()
        try:
            self.save()
        except Exception:
            self._vault = None
            self._state = StoreState.UNINITIALIZED
            raise
        logger.info("Vault initialized at %s (master key in %s store)", self.path, tier)
        return tier

    def load(self) -> None:
        """Decrypt the vault file into memory.

        Raises:
            UninitializedVault: If there is no vault file or no master key.
            DecryptionFailed: If the file fails authentication.
            KeyringUnavailable, KeyringAccessDenied: From the key store.
            VaultIoError: If the file cannot be read.
        """
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError as err:
            raise UninitializedVault() from err
        except OSError as err:
            raise VaultIoError(f"Cannot read vault {self.path}: {err}") from err

        blob = VaultBlob.loads(raw)
        with self.keys.master_key() as key:
            plaintext = decrypt(blob, key)
        self._vault = deserialize_vault(plaintext)
        self._state = StoreState.LOADED
        logger.debug(
            "Vault loaded from %s: %d account(s)",
            self.path, len(self._vault.accounts),
        )

    def save(self) -> None:
        """Encrypt the vault and atomically replace the vault file.

        The blob is written to a temporary file in the same directory,
        flushed to disk, then renamed over the target, so readers only
        ever see the previous or the new complete file.

        Raises:
            UninitializedVault: If nothing is loaded.
            VaultIoError: If the file cannot be written.
        """
        vault = self._require_vault()
        plaintext = serialize_vault(vault)
        with self.keys.master_key() as key:
            blob = encrypt(plaintext, key, cipher=self.config.cipher_backend)
        self._write_atomic(blob.dumps())
        self._state = StoreState.SAVED
        logger.debug("Vault saved to %s", self.path)

    def _write_atomic(self, data: bytes) -> None:
        directory = self.path.parent
        tmp_path = None
        try:
            directory.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=directory, prefix=f".{self.path.name}.", suffix=".tmp",
            )
            with os.fdopen(fd, "wb") as fp:
                fp.write(data)
                fp.flush()
                os.fsync(fp.fileno())
            os.chmod(tmp_path, VAULT_FILE_MODE)
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as err:
            raise VaultIoError(f"Cannot write vault {self.path}: {err}") from err
        finally:
            if tmp_path is not None:
                Path(tmp_path).unlink(missing_ok=True)

    def reset(self) -> None:
        """Delete the master key from all tiers and remove the vault file.

        Missing key or missing file are not errors.
        """
        self.keys.delete_master_key()
        try:
            self.path.unlink(missing_ok=True)
        except OSError as err:
            raise VaultIoError(f"Cannot delete vault {self.path}: {err}") from err
        self._vault = None
        self._state = StoreState.UNINITIALIZED
        logger.info("Vault reset: %s removed", self.path)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def add(
        self,
        label: str,
        secret: Optional[str] = None,
        *,
        algorithm: Union[Algorithm, str] = Algorithm.SHA1,
        digits: int = 6,
        period: int = 30,
        issuer: Optional[str] = None,
    ) -> Account:
        """Add an account and persist the vault.

        Args:
            label: Unique, case-sensitive account label.
            secret: Base32 secret; a random one is generated if omitted.
            algorithm: HMAC hash function.
            digits: Code length (6, 7 or 8).
            period: Time step in seconds.
            issuer: Optional issuer for provisioning URIs.

        Returns:
            The new Account, including its secret.

        Raises:
            DuplicateAccount: If ``label`` is already present.
            InvalidSecret: If ``secret`` is not valid Base32 or too short.
            InvalidAccount: If the label or parameters are invalid.
        """
        vault = self._require_vault()
        if label in vault.accounts:
            raise DuplicateAccount(label)

        if secret is None:
            raw_secret = codec.generate()
        else:
            raw_secret = codec.decode(secret)
        if len(raw_secret) < codec.MIN_SECRET_BYTES:
            raise InvalidSecret(
                f"Secret must be at least {codec.MIN_SECRET_BYTES} bytes, "
                f"got {len(raw_secret)}"
            )

        try:
            account = Account(
                label=label,
                secret=raw_secret,
                algorithm=Algorithm(algorithm),
                digits=digits,
                period=period,
                issuer=issuer,
            )
        except (ValidationError, ValueError) as err:
            raise InvalidAccount(str(err)) from err

        previous = self._state
        vault.accounts[label] = account
        self._state = StoreState.MODIFIED
        try:
            self.save()
        except Exception:
            del vault.accounts[label]
            self._state = previous
            raise
        logger.info("Account added: %s", label)
        return account

    def remove(self, label: str) -> None:
        """Remove an account and persist the vault.

        Raises:
            AccountNotFound: If ``label`` is not present.
        """
        vault = self._require_vault()
        if label not in vault.accounts:
            raise AccountNotFound(label)
        previous = self._state
        snapshot = dict(vault.accounts)
        del vault.accounts[label]
        self._state = StoreState.MODIFIED
        try:
            self.save()
        except Exception:
            vault.accounts = snapshot
            self._state = previous
            raise
        logger.info("Account removed: %s", label)

    def list(self) -> list[AccountSummary]:
        """Account metadata in insertion order; never includes secrets."""
        vault = self._require_vault()
        return [account.summary() for account in vault.accounts.values()]

    def get(self, label: str) -> Account:
        """Return the full account.

        Raises:
            AccountNotFound: If ``label`` is not present.
        """
        vault = self._require_vault()
        try:
            return vault.accounts[label]
        except KeyError as err:
            raise AccountNotFound(label) from err

    def get_secret(self, label: str) -> bytes:
        """Return the decoded secret for code generation."""
        return self.get(label).secret
