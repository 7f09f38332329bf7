"""
Vault Key Storage: Master key custody in the platform secret store.

The master key never lives next to the vault file. It is kept by one of
several tiers, probed at runtime in order of preference:

- ``native``: the OS secret store through the ``keyring`` library
  (macOS Keychain, Windows Credential Locker, Secret Service / KWallet).
- ``file``: a base64 key file readable only by the owning user, used when
  no native store is reachable.

Entries are stored base64-encoded under
``(service="r-auth", account="master-key")``.

Security Note:
    Never log key material. Only log tier names and backend classes.
"""
import os
import abc
import base64
import binascii
import logging
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

import keyring
from keyring.backends import fail, null
from keyring.errors import (
    InitError,
    KeyringError,
    KeyringLocked,
    NoKeyringError,
    PasswordDeleteError,
)

from ..exceptions import (
    DecryptionFailed,
    KeyringAccessDenied,
    KeyringUnavailable,
    UninitializedVault,
)
from .config import KEYRING_ACCOUNT, KEYRING_SERVICE, MASTER_KEY_SIZE, VaultConfig
from .crypto import new_master_key, wipe, wiped

logger = logging.getLogger("r_auth.vault")


def _encode_key(key: bytearray) -> str:
    return base64.b64encode(key).decode("ascii")


def _decode_key(encoded: str) -> bytearray:
    """Decode a stored master key.

    Raises:
        DecryptionFailed: If the stored value is not a base64 32-byte key.
    """
    try:
        key = bytearray(base64.b64decode(encoded.strip(), validate=True))
    except (binascii.Error, ValueError) as err:
        raise DecryptionFailed("Stored master key is corrupted") from err
    if len(key) != MASTER_KEY_SIZE:
        size = len(key)
        wipe(key)
        raise DecryptionFailed(
            f"Stored master key has {size} bytes, expected {MASTER_KEY_SIZE}"
        )
    return key


class KeyStore(abc.ABC):
    """A place where the master key can be kept."""

    name: str = ""

    @abc.abstractmethod
    def available(self) -> bool:
        """Probe whether this store can be reached right now."""

    @abc.abstractmethod
    def get(self) -> Optional[bytearray]:
        """Return the stored key, or None if this store holds no key."""

    @abc.abstractmethod
    def set(self, key: bytearray) -> None:
        """Store ``key``, replacing any previous value."""

    @abc.abstractmethod
    def delete(self) -> None:
        """Remove the stored key. Removing an absent key is not an error."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class NativeKeyStore(KeyStore):
    """Master key kept in the OS secret store via ``keyring``.

    Args:
        service: Keyring service name.
        account: Keyring account (user) name.
        backend: Explicit ``keyring`` backend; defaults to the one
            ``keyring.get_keyring()`` selects for this platform.
    """

    name = "native"

    def __init__(
        self,
        service: str = KEYRING_SERVICE,
        account: str = KEYRING_ACCOUNT,
        backend: Any = None,
    ):
        self._service = service
        self._account = account
        self._backend = backend

    @property
    def backend(self) -> Any:
        if self._backend is None:
            self._backend = keyring.get_keyring()
        return self._backend

    def available(self) -> bool:
        backend = self.backend
        usable = not isinstance(backend, (fail.Keyring, null.Keyring))
        logger.debug(
            "Native keyring %s: %s",
            type(backend).__name__, "available" if usable else "unavailable",
        )
        return usable

    def get(self) -> Optional[bytearray]:
        try:
            encoded = self.backend.get_password(self._service, self._account)
        except (NoKeyringError, InitError) as err:
            raise KeyringUnavailable(f"Native keyring unreachable: {err}") from err
        except KeyringError as err:
            raise KeyringAccessDenied(f"Native keyring denied access: {err}") from err
        if encoded is None:
            return None
        return _decode_key(encoded)

    def set(self, key: bytearray) -> None:
        try:
            self.backend.set_password(self._service, self._account, _encode_key(key))
        except KeyringLocked as err:
            raise KeyringAccessDenied(f"Native keyring is locked: {err}") from err
        except KeyringError as err:
            raise KeyringUnavailable(f"Native keyring rejected the key: {err}") from err

    def delete(self) -> None:
        try:
            self.backend.delete_password(self._service, self._account)
        except PasswordDeleteError:
            logger.debug("No master key in native keyring, nothing to delete")
        except KeyringLocked as err:
            raise KeyringAccessDenied(f"Native keyring is locked: {err}") from err
        except KeyringError as err:
            raise KeyringUnavailable(f"Native keyring unreachable: {err}") from err


class FileKeyStore(KeyStore):
    """Master key kept in a base64 file with owner-only permissions."""

    name = "file"

    def __init__(self, path: Path):
        self.path = Path(path)

    def available(self) -> bool:
        try:
            self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as err:
            logger.debug("Key file directory %s unusable: %s", self.path.parent, err)
            return False
        return os.access(self.path.parent, os.R_OK | os.W_OK)

    def get(self) -> Optional[bytearray]:
        try:
            encoded = self.path.read_text(encoding="ascii")
        except FileNotFoundError:
            return None
        except PermissionError as err:
            raise KeyringAccessDenied(f"Cannot read key file {self.path}: {err}") from err
        except (OSError, UnicodeDecodeError) as err:
            raise KeyringUnavailable(f"Cannot read key file {self.path}: {err}") from err
        return _decode_key(encoded)

    def set(self, key: bytearray) -> None:
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp",
            )
            with os.fdopen(fd, "w", encoding="ascii") as fp:
                fp.write(_encode_key(key))
                fp.flush()
                os.fsync(fp.fileno())
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
            tmp_path = None
        except PermissionError as err:
            raise KeyringAccessDenied(f"Cannot write key file {self.path}: {err}") from err
        except OSError as err:
            raise KeyringUnavailable(f"Cannot write key file {self.path}: {err}") from err
        finally:
            if tmp_path is not None:
                Path(tmp_path).unlink(missing_ok=True)

    def delete(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except PermissionError as err:
            raise KeyringAccessDenied(f"Cannot delete key file {self.path}: {err}") from err
        except OSError as err:
            raise KeyringUnavailable(f"Cannot delete key file {self.path}: {err}") from err


class KeyringAdapter:
    """Tiered master key custody.

    Tiers are tried in order; a tier is used only if ``available()`` says
    it is reachable. The tier that ends up holding the key is always
    reported to the caller.
    """

    def __init__(self, tiers: Sequence[KeyStore]):
        if not tiers:
            raise ValueError("KeyringAdapter needs at least one key store")
        self.tiers = list(tiers)

    @classmethod
    def from_config(cls, config: VaultConfig, backend: Any = None) -> "KeyringAdapter":
        """Build the tier list from ``config.keyring_backend``.

        Args:
            config: Vault configuration.
            backend: Optional explicit ``keyring`` backend for the native tier.
        """
        tiers: list[KeyStore] = []
        if config.keyring_backend in ("auto", "native"):
            tiers.append(NativeKeyStore(
                config.keyring_service, config.keyring_account, backend=backend,
            ))
        if config.keyring_backend in ("auto", "file"):
            tiers.append(FileKeyStore(config.key_path))
        return cls(tiers)

    def available_tiers(self) -> list[KeyStore]:
        return [tier for tier in self.tiers if tier.available()]

    def _find(self) -> tuple[Optional[KeyStore], Optional[bytearray]]:
        tiers = self.available_tiers()
        if not tiers:
            raise KeyringUnavailable()
        failure: Optional[KeyringUnavailable] = None
        for tier in tiers:
            try:
                key = tier.get()
            except KeyringUnavailable as err:
                logger.warning("Key store %s failed on read: %s", tier.name, err)
                if failure is None:
                    failure = err
                continue
            if key is not None:
                return tier, key
        # the key may sit in the store that failed
        if failure is not None:
            raise failure
        return None, None

    def get_master_key(self) -> Optional[bytearray]:
        """Fetch the master key from the first tier holding one.

        Returns:
            The key as a ``bytearray`` the caller must wipe, or None when
            reachable tiers hold no key.

        Raises:
            KeyringUnavailable: If no tier can be reached, or a reachable
                tier failed and no other tier holds the key.
            KeyringAccessDenied: If a store refuses access.
        """
        _, key = self._find()
        return key

    def locate(self) -> Optional[str]:
        """Name of the tier currently holding the master key, if any."""
        tier, key = self._find()
        if key is not None:
            wipe(key)
        return tier.name if tier is not None else None

    def create_master_key(self) -> str:
        """Generate a fresh master key and store it in the first usable tier.

        Returns:
            Name of the tier that now holds the key.

        Raises:
            KeyringUnavailable: If no tier accepted the key.
            KeyringAccessDenied: If a store refuses access.
        """
        with wiped(new_master_key()) as key:
            for tier in self.available_tiers():
                try:
                    tier.set(key)
                except KeyringUnavailable as err:
                    logger.warning(
                        "Key store %s could not store the master key, "
                        "trying next tier: %s", tier.name, err,
                    )
                    continue
                logger.info("Master key created in %s key store", tier.name)
                return tier.name
        raise KeyringUnavailable()

    def ensure_master_key(self) -> str:
        """Return the tier holding the master key, creating one if needed."""
        tier = self.locate()
        if tier is not None:
            logger.info("Using existing master key from %s key store", tier)
            return tier
        return self.create_master_key()

    def delete_master_key(self) -> None:
        """Delete the master key from every reachable tier. Idempotent.

        Tiers whose ``available()`` check fails are skipped; a reachable tier
        that fails to delete raises.

        Raises:
            KeyringUnavailable, KeyringAccessDenied: From a reachable tier.
        """
        for tier in self.available_tiers():
            tier.delete()
            logger.debug("Master key removed from %s key store", tier.name)

    @contextmanager
    def master_key(self) -> Iterator[bytearray]:
        """Borrow the master key for a single operation.

        The key is zeroed when the block exits, on every path.

        Raises:
            UninitializedVault: If no tier holds a master key.
        """
        key = self.get_master_key()
        if key is None:
            raise UninitializedVault("Master key not found. Please run 'init' first.")
        with wiped(key) as borrowed:
            yield borrowed
