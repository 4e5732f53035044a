# Overview: Locking and retry helpers shared by the inventory-mutating services.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts on version_id). The retried call re-reads
    current state, so a unit claimed by the winner is rejected by the
    loser's normal validation.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def commit_with_retry(*, attempts: int = 3, backoff_base: float = 0.1):
    """Commit current session with retry handling."""
    def _op():
        db.session.commit()
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)


class _KeyedLock:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = threading.RLock()
        self.holders = 0


class KeyedLockRegistry:
    """
    Process-local single-writer-per-key locks.

    Serializes "read current state, decide, write" sequences for the same
    barcode or outlet within one process. Keys are acquired in sorted order
    so two callers holding overlapping key sets cannot deadlock.

    An entry lives only while some caller holds or waits for its key; the
    last one out removes it, so the registry does not grow with every
    barcode ever handled.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, _KeyedLock] = {}

    def _checkout(self, key: str) -> threading.RLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _KeyedLock()
            entry.holders += 1
            return entry.lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._locks[key]
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, *keys: str):
        ordered = sorted({str(k) for k in keys if k is not None})
        held = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                held.append((key, lock))
            yield
        finally:
            for key, lock in reversed(held):
                lock.release()
                self._checkin(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


unit_locks = KeyedLockRegistry()


def barcode_key(barcode: str) -> str:
    return f"barcode:{barcode}"


def outlet_key(store_name: str) -> str:
    return f"outlet:{store_name}"


def product_key(product_id) -> str:
    return f"product:{product_id}"
