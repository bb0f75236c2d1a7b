"""
Per-Account Locking

Serializes balance-changing operations on the same account while letting
different accounts proceed in parallel. One lock per account id is created
on demand and dropped once nobody holds or waits for it.
"""

import threading
from contextlib import contextmanager
from typing import Callable, Dict, Optional, TypeVar

from .errors import LockTimeout


T = TypeVar("T")

_USE_DEFAULT = object()


class _LockEntry:
    """A lock and the number of callers holding or waiting for it"""
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class AccountLockCoordinator:
    """
    Keyed mutex: at most one in-flight mutating operation per account.

    No fairness is promised between waiters. Callers never hold two account
    locks at once, so there is no lock ordering to get wrong.
    """

    def __init__(self, default_timeout: Optional[float] = None):
        """
        Args:
            default_timeout: Seconds to wait for a busy account before raising
                LockTimeout. None or a non-positive value waits forever.
        """
        self.default_timeout = default_timeout
        self._guard = threading.Lock()
        self._entries: Dict[str, _LockEntry] = {}

    def _checkout(self, account_id: str) -> _LockEntry:
        with self._guard:
            entry = self._entries.get(account_id)
            if entry is None:
                entry = _LockEntry()
                self._entries[account_id] = entry
            entry.users += 1
            return entry

    def _checkin(self, account_id: str, entry: _LockEntry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[account_id]

    @contextmanager
    def account_lock(self, account_id: str, timeout=_USE_DEFAULT):
        """
        Hold the lock for ``account_id`` for the duration of the block.

        Raises:
            LockTimeout: If the lock is not acquired within the timeout
        """
        if timeout is _USE_DEFAULT:
            timeout = self.default_timeout

        entry = self._checkout(account_id)
        try:
            if timeout is not None and timeout > 0:
                acquired = entry.lock.acquire(timeout=timeout)
            else:
                acquired = entry.lock.acquire()
            if not acquired:
                raise LockTimeout(account_id, timeout)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(account_id, entry)

    def with_account_lock(self, account_id: str, fn: Callable[[], T], timeout=_USE_DEFAULT) -> T:
        """Run ``fn`` while holding the account lock and return its result"""
        with self.account_lock(account_id, timeout=timeout):
            return fn()

    def is_locked(self, account_id: str) -> bool:
        with self._guard:
            entry = self._entries.get(account_id)
            return entry is not None and entry.lock.locked()

    def active_locks(self) -> int:
        """Number of accounts with a lock currently held or awaited"""
        with self._guard:
            return len(self._entries)
