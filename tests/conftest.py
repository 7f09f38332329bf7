import pytest
from keyring.backend import KeyringBackend
from keyring.errors import InitError, KeyringError, KeyringLocked, PasswordDeleteError

from r_auth.vault import AccountStore, KeyringAdapter, VaultConfig

# RFC 6238 Appendix B seeds (ASCII)
RFC_SECRET_SHA1 = b"12345678901234567890"
RFC_SECRET_SHA256 = b"12345678901234567890123456789012"
RFC_SECRET_SHA512 = (
    b"1234567890123456789012345678901234567890123456789012345678901234"
)


class MemoryKeyring(KeyringBackend):
    """In-process keyring backend standing in for the OS secret store."""

    priority = 1

    def __init__(self):
        super().__init__()
        self.passwords = {}

    def get_password(self, service, username):
        return self.passwords.get((service, username))

    def set_password(self, service, username, password):
        self.passwords[(service, username)] = password

    def delete_password(self, service, username):
        try:
            del self.passwords[(service, username)]
        except KeyError:
            raise PasswordDeleteError("Password not found")


class LockedKeyring(MemoryKeyring):
    """Keyring whose user declined the unlock prompt."""

    def get_password(self, service, username):
        raise KeyringLocked("user declined")

    def set_password(self, service, username, password):
        raise KeyringLocked("user declined")

    def delete_password(self, service, username):
        raise KeyringLocked("user declined")


class FailingReadKeyring(MemoryKeyring):
    """Keyring that stores entries but cannot be opened for reading."""

    def get_password(self, service, username):
        raise InitError("secret service went away")


class FailingDeleteKeyring(MemoryKeyring):
    """Keyring that keeps entries when asked to delete them."""

    def delete_password(self, service, username):
        raise KeyringError("delete failed")


@pytest.fixture
def memory_keyring():
    return MemoryKeyring()


@pytest.fixture
def config(tmp_path):
    """Vault configuration rooted in a temporary directory."""
    return VaultConfig(home=tmp_path / "r-auth", key_home=tmp_path / "keys")


@pytest.fixture
def keys(config, memory_keyring):
    return KeyringAdapter.from_config(config, backend=memory_keyring)


@pytest.fixture
def store(config, keys):
    """A store with no vault on disk yet."""
    return AccountStore(config, keys)


@pytest.fixture
def ready_store(store):
    """An initialized, empty store."""
    store.init()
    return store
