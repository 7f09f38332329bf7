"""
Authenticator: programmatic surface of r-auth.

This is what a command-line front-end calls: it owns an AccountStore,
loads it on first use, and turns stored accounts into TOTP codes and
provisioning URIs. Rendering, prompting and QR output are left to the
caller.
"""
import time
import logging
from typing import Callable, Iterator, List, Optional
from urllib.parse import quote, urlencode

from . import codec, totp
from .models import Account, AccountSummary, TotpCode
from .vault import AccountStore, VaultConfig

logger = logging.getLogger("r_auth.totp")

DEFAULT_ISSUER = "r-auth"


class Authenticator:
    """Facade over an AccountStore.

    Args:
        store: Account store; one is built from ``VaultConfig.from_env()``
            when omitted.
    """

    def __init__(self, store: Optional[AccountStore] = None):
        self.store = store if store is not None else AccountStore(VaultConfig.from_env())

    def _loaded(self) -> AccountStore:
        if not self.store.loaded:
            self.store.load()
        return self.store

    def init(self) -> str:
        """Initialize a new vault, returning the key store tier in use."""
        return self.store.init()

    def add(self, label: str, secret: Optional[str] = None, **params) -> Account:
        """Add an account; see ``AccountStore.add`` for parameters."""
        return self._loaded().add(label, secret, **params)

    def list(self) -> List[AccountSummary]:
        """Account metadata in insertion order, without secrets."""
        return self._loaded().list()

    def remove(self, label: str) -> None:
        self._loaded().remove(label)

    def reset(self) -> None:
        """Delete the master key and the vault, whatever state they are in."""
        self.store.reset()

    def _code_for(self, account: Account, timestamp: float) -> TotpCode:
        return TotpCode(
            label=account.label,
            value=totp.compute(
                account.secret,
                timestamp,
                period=account.period,
                digits=account.digits,
                algorithm=account.algorithm,
            ),
            remaining_seconds=totp.remaining_validity(timestamp, account.period),
        )

    def code(self, label: str, timestamp: Optional[float] = None) -> TotpCode:
        """Current code for one account.

        Args:
            label: Account label.
            timestamp: Unix time to compute for; defaults to now.

        Raises:
            AccountNotFound: If ``label`` is not present.
        """
        account = self._loaded().get(label)
        if timestamp is None:
            timestamp = time.time()
        return self._code_for(account, timestamp)

    def codes(self, timestamp: Optional[float] = None) -> List[TotpCode]:
        """Current codes for every account, in listing order."""
        store = self._loaded()
        if timestamp is None:
            timestamp = time.time()
        return [
            self._code_for(store.get(summary.label), timestamp)
            for summary in store.list()
        ]

    def provisioning_uri(self, label: str, issuer: Optional[str] = None) -> str:
        """Build an ``otpauth://totp/`` key URI for authenticator apps.

        The issuer defaults to the account's issuer, then to "r-auth".
        """
        account = self._loaded().get(label)
        issuer = issuer or account.issuer or DEFAULT_ISSUER
        query = urlencode({
            "secret": codec.encode(account.secret),
            "issuer": issuer,
            "algorithm": account.algorithm.value,
            "digits": account.digits,
            "period": account.period,
        })
        name = quote(f"{issuer}:{account.label}", safe=":@")
        return f"otpauth://totp/{name}?{query}"

    def watch(
        self,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Iterator[List[TotpCode]]:
        """Yield all codes, then again each time one of them rolls over.

        The vault is loaded once before the first batch; afterwards the
        loop only reads memory, so stopping it (closing the generator or
        an interrupt) can never leave a partial write. Load errors
        propagate and end the iteration.
        """
        store = self._loaded()
        while True:
            now = clock()
            batch = self.codes(now)
            yield batch
            periods = [account.period for account in store.list()]
            if periods:
                delay = min(totp.remaining_validity(now, p) for p in periods)
            else:
                delay = totp.remaining_validity(now)
            # wake on the exact boundary, not a second-by-second poll
            delay -= now - int(now)
            logger.debug("Next code refresh in %.2fs", delay)
            sleep(max(delay, 0.0))
