from abc import ABC, abstractmethod
from typing import Dict
import threading

from accounts import Account
from errors import AccountNotFoundError


class AccountRegistry(ABC):
    @abstractmethod
    def create_account(self) -> Account:
        """Allocate a new id and return the new zero-balance account."""
        pass

    @abstractmethod
    def lookup(self, account_id: int) -> Account:
        """Return the live account for id. Raises AccountNotFoundError."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Get total number of accounts."""
        pass


class InMemoryAccountRegistry(AccountRegistry):
    """Process-lifetime owner of every account.

    A single lock serializes id allocation and lookups. It is never held
    while an account lock is taken: lookup hands back the account and the
    caller operates on it after the registry lock is released.
    """

    def __init__(self):
        self._accounts: Dict[int, Account] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def create_account(self) -> Account:
        with self._lock:
            account = Account(self._next_id)
            self._accounts[account.id] = account
            self._next_id += 1
        return account

    def lookup(self, account_id: int) -> Account:
        with self._lock:
            account = self._accounts.get(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def count(self) -> int:
        with self._lock:
            return len(self._accounts)

    @property
    def next_id(self) -> int:
        with self._lock:
            return self._next_id
