"""
Tests for AccountStore.

Tests cover:
- init / load / save / reset lifecycle and state transitions
- Account uniqueness, removal and listing order
- Secret validation on add
- Typed failures: uninitialized vault, wrong key, tampered file, missing keyring
- Atomic saves surviving an interrupted rename
"""
import os
import stat
import base64

import orjson
import pytest
from keyring.backends import fail

from r_auth import codec
from r_auth.exceptions import (
    AccountNotFound,
    AlreadyInitialized,
    DecryptionFailed,
    DuplicateAccount,
    InvalidAccount,
    InvalidSecret,
    KeyringAccessDenied,
    KeyringUnavailable,
    UninitializedVault,
    VaultIoError,
)
from r_auth.models import Algorithm
from r_auth.vault import AccountStore, KeyringAdapter, NativeKeyStore, StoreState, VaultConfig

from .conftest import FailingDeleteKeyring, FailingReadKeyring, LockedKeyring

RFC_B32 = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"


def crash(src, dst):
    raise OSError("simulated crash before rename")


def reopen(store):
    """A fresh store over the same vault file and key custody."""
    fresh = AccountStore(store.config, store.keys)
    fresh.load()
    return fresh


# --- Test Lifecycle ---

class TestInit:

    def test_creates_vault_file(self, store):
        assert store.state is StoreState.UNINITIALIZED
        assert store.init() == "native"
        assert store.exists()
        assert store.state is StoreState.SAVED
        assert store.list() == []

    def test_vault_file_permissions(self, ready_store):
        mode = stat.S_IMODE(ready_store.path.stat().st_mode)
        assert mode == 0o600

    def test_vault_file_is_encrypted_envelope(self, ready_store):
        doc = orjson.loads(ready_store.path.read_bytes())
        assert doc["format_version"] == 1
        assert doc["cipher"] == "aesgcm"
        assert "accounts" not in doc

    def test_twice_fails(self, ready_store):
        with pytest.raises(AlreadyInitialized):
            ready_store.init()

    def test_failed_first_save_leaves_store_uninitialized(self, store, monkeypatch):
        monkeypatch.setattr(os, "replace", crash)
        with pytest.raises(VaultIoError):
            store.init()
        monkeypatch.undo()
        assert not store.loaded
        assert store.state is StoreState.UNINITIALIZED
        assert not store.exists()
        with pytest.raises(UninitializedVault):
            store.list()
        assert store.init() == "native"

    def test_reuses_existing_master_key(self, store, keys, memory_keyring):
        keys.create_master_key()
        stored = dict(memory_keyring.passwords)
        store.init()
        assert memory_keyring.passwords == stored

    def test_chacha20_backend(self, tmp_path, memory_keyring):
        config = VaultConfig(home=tmp_path, key_home=tmp_path / "keys", cipher_backend="chacha20")
        store = AccountStore(config, KeyringAdapter.from_config(config, backend=memory_keyring))
        store.init()
        store.add("github", RFC_B32)
        assert orjson.loads(store.path.read_bytes())["cipher"] == "chacha20"
        assert reopen(store).get_secret("github") == b"12345678901234567890"


class TestLoad:

    def test_without_vault_file(self, store):
        with pytest.raises(UninitializedVault):
            store.load()

    def test_loads_saved_accounts(self, ready_store):
        ready_store.add("github", RFC_B32)
        fresh = reopen(ready_store)
        assert fresh.state is StoreState.LOADED
        assert fresh.get_secret("github") == b"12345678901234567890"

    def test_missing_master_key(self, ready_store, memory_keyring):
        memory_keyring.passwords.clear()
        fresh = AccountStore(ready_store.config, ready_store.keys)
        with pytest.raises(UninitializedVault):
            fresh.load()

    def test_wrong_master_key(self, ready_store, memory_keyring):
        memory_keyring.passwords[("r-auth", "master-key")] = (
            base64.b64encode(os.urandom(32)).decode()
        )
        with pytest.raises(DecryptionFailed):
            reopen(ready_store)

    def test_tampered_file(self, ready_store):
        doc = orjson.loads(ready_store.path.read_bytes())
        ciphertext = bytearray(base64.b64decode(doc["ciphertext"]))
        ciphertext[-1] ^= 0x01
        doc["ciphertext"] = base64.b64encode(ciphertext).decode()
        ready_store.path.write_bytes(orjson.dumps(doc))
        with pytest.raises(DecryptionFailed):
            reopen(ready_store)

    def test_corrupted_file(self, ready_store):
        ready_store.path.write_bytes(b"\x00garbage")
        with pytest.raises(DecryptionFailed):
            reopen(ready_store)

    def test_keyring_unavailable_propagates(self, ready_store):
        keys = KeyringAdapter([NativeKeyStore(backend=fail.Keyring())])
        fresh = AccountStore(ready_store.config, keys)
        with pytest.raises(KeyringUnavailable):
            fresh.load()

    def test_keyring_read_failure_is_not_uninitialized(self, ready_store):
        """A keyring that fails on read is reported as such, not as a missing key."""
        keys = KeyringAdapter.from_config(ready_store.config, backend=FailingReadKeyring())
        with pytest.raises(KeyringUnavailable):
            AccountStore(ready_store.config, keys).load()

    def test_keyring_access_denied_propagates(self, ready_store):
        keys = KeyringAdapter.from_config(ready_store.config, backend=LockedKeyring())
        fresh = AccountStore(ready_store.config, keys)
        with pytest.raises(KeyringAccessDenied):
            fresh.load()
        assert not fresh.loaded

    def test_unreadable_vault_path(self, ready_store):
        ready_store.path.unlink()
        ready_store.path.mkdir()
        with pytest.raises(VaultIoError):
            AccountStore(ready_store.config, ready_store.keys).load()


class TestUninitialized:
    """Accessors before init()/load() fail with UninitializedVault."""

    @pytest.mark.parametrize("call", [
        lambda s: s.list(),
        lambda s: s.get("x"),
        lambda s: s.get_secret("x"),
        lambda s: s.add("x", RFC_B32),
        lambda s: s.remove("x"),
        lambda s: s.save(),
    ])
    def test_accessors(self, store, call):
        with pytest.raises(UninitializedVault):
            call(store)

    def test_existing_file_still_requires_load(self, ready_store):
        fresh = AccountStore(ready_store.config, ready_store.keys)
        with pytest.raises(UninitializedVault):
            fresh.list()


# --- Test Accounts ---

class TestAdd:

    def test_with_secret(self, ready_store):
        account = ready_store.add("github", RFC_B32)
        assert account.label == "github"
        assert account.secret == b"12345678901234567890"
        assert account.algorithm is Algorithm.SHA1
        assert account.digits == 6
        assert account.period == 30
        assert ready_store.state is StoreState.SAVED

    def test_lowercase_unpadded_secret(self, ready_store):
        account = ready_store.add("github", RFC_B32.lower())
        assert account.secret == b"12345678901234567890"

    def test_generated_secret(self, ready_store):
        account = ready_store.add("github")
        assert len(account.secret) == codec.DEFAULT_SECRET_BYTES
        assert ready_store.get_secret("github") == account.secret

    def test_custom_parameters(self, ready_store):
        ready_store.add(
            "bank", RFC_B32, algorithm="sha256", digits=8, period=60, issuer="Bank",
        )
        account = reopen(ready_store).get("bank")
        assert account.algorithm is Algorithm.SHA256
        assert account.digits == 8
        assert account.period == 60
        assert account.issuer == "Bank"

    def test_duplicate_label(self, ready_store):
        ready_store.add("github", RFC_B32)
        with pytest.raises(DuplicateAccount):
            ready_store.add("github")

    def test_labels_are_case_sensitive(self, ready_store):
        ready_store.add("github", RFC_B32)
        ready_store.add("GitHub", RFC_B32)
        assert [a.label for a in ready_store.list()] == ["github", "GitHub"]

    @pytest.mark.parametrize("secret", ["", "not base32!", "GEZDGNBVG=="])
    def test_invalid_secret(self, ready_store, secret):
        with pytest.raises(InvalidSecret):
            ready_store.add("github", secret)
        assert ready_store.list() == []

    def test_short_secret(self, ready_store):
        with pytest.raises(InvalidSecret):
            ready_store.add("github", codec.encode(b"123456789"))

    @pytest.mark.parametrize("label,params", [
        ("", {}),
        ("   ", {}),
        ("github", {"digits": 5}),
        ("github", {"digits": 9}),
        ("github", {"period": 0}),
        ("github", {"algorithm": "md5"}),
    ])
    def test_invalid_account(self, ready_store, label, params):
        with pytest.raises(InvalidAccount):
            ready_store.add(label, RFC_B32, **params)
        assert ready_store.list() == []


class TestRemove:

    def test_remove(self, ready_store):
        ready_store.add("github", RFC_B32)
        ready_store.add("gitlab", RFC_B32)
        ready_store.remove("github")
        assert [a.label for a in ready_store.list()] == ["gitlab"]
        with pytest.raises(AccountNotFound):
            ready_store.get_secret("github")

    def test_remove_is_persisted(self, ready_store):
        ready_store.add("github", RFC_B32)
        ready_store.remove("github")
        fresh = reopen(ready_store)
        assert fresh.list() == []
        with pytest.raises(AccountNotFound):
            fresh.get_secret("github")

    def test_remove_missing(self, ready_store):
        with pytest.raises(AccountNotFound):
            ready_store.remove("nope")

    def test_label_can_be_reused(self, ready_store):
        ready_store.add("github", RFC_B32)
        ready_store.remove("github")
        ready_store.add("github")
        assert len(ready_store.list()) == 1


class TestList:

    def test_insertion_order(self, ready_store):
        for label in ("zeta", "alpha", "mid"):
            ready_store.add(label)
        assert [a.label for a in ready_store.list()] == ["zeta", "alpha", "mid"]
        assert [a.label for a in reopen(ready_store).list()] == ["zeta", "alpha", "mid"]

    def test_summaries_have_no_secret(self, ready_store):
        ready_store.add("github", RFC_B32)
        summary = ready_store.list()[0]
        assert not hasattr(summary, "secret")
        assert "secret" not in summary.model_dump()

    def test_does_not_persist(self, ready_store):
        before = ready_store.path.stat().st_mtime_ns
        ready_store.list()
        assert ready_store.path.stat().st_mtime_ns == before

    def test_get_secret_missing(self, ready_store):
        with pytest.raises(AccountNotFound):
            ready_store.get_secret("nope")


# --- Test Atomic Save ---

class TestAtomicSave:

    def test_interrupted_rename_keeps_previous_vault(self, ready_store, monkeypatch):
        ready_store.add("github", RFC_B32)
        previous = ready_store.path.read_bytes()

        monkeypatch.setattr(os, "replace", crash)
        with pytest.raises(VaultIoError):
            ready_store.add("gitlab", RFC_B32)
        monkeypatch.undo()

        assert ready_store.path.read_bytes() == previous
        assert [a.label for a in ready_store.list()] == ["github"]
        assert ready_store.state is StoreState.SAVED
        assert [a.label for a in reopen(ready_store).list()] == ["github"]
        leftovers = [p for p in ready_store.path.parent.iterdir() if p.suffix == ".tmp"]
        assert leftovers == []

    def test_interrupted_remove_keeps_account(self, ready_store, monkeypatch):
        ready_store.add("github", RFC_B32)
        monkeypatch.setattr(os, "replace", crash)
        with pytest.raises(VaultIoError):
            ready_store.remove("github")
        monkeypatch.undo()
        assert [a.label for a in ready_store.list()] == ["github"]
        assert ready_store.state is StoreState.SAVED
        assert reopen(ready_store).get_secret("github") == b"12345678901234567890"

    def test_stale_temp_file_ignored(self, ready_store):
        """A temp file left by a crashed writer does not affect loading."""
        ready_store.add("github", RFC_B32)
        stale = ready_store.path.parent / f".{ready_store.path.name}.crash.tmp"
        stale.write_bytes(b"half-written")
        assert [a.label for a in reopen(ready_store).list()] == ["github"]

    def test_each_save_uses_fresh_nonce(self, ready_store):
        first = orjson.loads(ready_store.path.read_bytes())["nonce"]
        ready_store.save()
        second = orjson.loads(ready_store.path.read_bytes())["nonce"]
        assert first != second


# --- Test Reset ---

class TestReset:

    def test_removes_file_and_key(self, ready_store, memory_keyring):
        ready_store.reset()
        assert not ready_store.exists()
        assert memory_keyring.passwords == {}
        assert ready_store.state is StoreState.UNINITIALIZED
        with pytest.raises(UninitializedVault):
            ready_store.list()

    def test_idempotent(self, ready_store):
        ready_store.reset()
        ready_store.reset()

    def test_on_fresh_store(self, store):
        store.reset()
        assert not store.exists()

    def test_with_missing_key(self, ready_store, memory_keyring):
        memory_keyring.passwords.clear()
        ready_store.reset()
        assert not ready_store.exists()

    def test_removes_fallback_key_file(self, config):
        keys = KeyringAdapter.from_config(config, backend=fail.Keyring())
        store = AccountStore(config, keys)
        assert store.init() == "file"
        store.reset()
        assert not config.key_path.exists()
        assert not store.exists()

    def test_keyring_delete_failure_propagates(self, config):
        backend = FailingDeleteKeyring()
        store = AccountStore(config, KeyringAdapter.from_config(config, backend=backend))
        store.init()
        with pytest.raises(KeyringUnavailable):
            store.reset()
        assert ("r-auth", "master-key") in backend.passwords
        assert store.exists()

    def test_init_after_reset(self, ready_store):
        ready_store.add("github", RFC_B32)
        ready_store.reset()
        ready_store.init()
        assert ready_store.list() == []
