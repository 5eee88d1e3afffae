"""
Per-account mutual exclusion.

Generation and execution for one account must not interleave; different
accounts run fully in parallel. This covers a single process. Across
processes the settlement ledger also takes a row lock on the account.
"""
import threading
from contextlib import ExitStack, contextmanager
from typing import Dict, Iterable, Iterator


class AccountLockRegistry:
    """Keyed lock registry. Locks are created on first use and kept."""

    def __init__(self):
        self._lock = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, account_id: str) -> threading.Lock:
        with self._lock:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[account_id] = lock
            return lock

    @contextmanager
    def hold(self, account_id: str) -> Iterator[None]:
        lock = self._lock_for(account_id)
        with lock:
            yield

    @contextmanager
    def hold_many(self, account_ids: Iterable[str]) -> Iterator[None]:
        """Hold several account locks, acquired in sorted order."""
        with ExitStack() as stack:
            for account_id in sorted(set(account_ids)):
                stack.enter_context(self.hold(account_id))
            yield

    def __contains__(self, account_id: str) -> bool:
        with self._lock:
            return account_id in self._locks

    def __len__(self) -> int:
        with self._lock:
            return len(self._locks)
