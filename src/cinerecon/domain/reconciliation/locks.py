"""In-process locks guarding shared natural keys and auditor exclusivity.

Both lock types are plain objects handed to the reconciler and the auditor;
nothing here is module state. They coordinate threads of one process only,
concurrent processes rely on the store's unique constraints plus the key
retry loop.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from cinerecon.domain.errors import StoreTimeoutError

if TYPE_CHECKING:
    from collections.abc import Hashable, Iterable, Iterator


def _wait_timeout(timeout: float | None) -> float:
    return -1 if timeout is None else timeout


@dataclass(slots=True)
class _KeyEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class KeyLocks:
    """One mutex per natural key, acquired in a stable order to avoid deadlock.

    An entry lives only while some thread holds or waits for its key.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[Hashable, _KeyEntry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _KeyEntry()
            entry.users += 1
            return entry.lock

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            entry = self._entries[key]
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, keys: Iterable[Hashable], *, timeout: float | None = None) -> Iterator[None]:
        ordered = sorted(set(keys), key=repr)
        acquired: list[tuple[Hashable, threading.Lock]] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                if not lock.acquire(timeout=_wait_timeout(timeout)):
                    self._checkin(key)
                    raise StoreTimeoutError(f"waiting for key lock {key!r}")
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)


class ReadWriteLock:
    """Shared/exclusive lock with writer preference.

    Reconciliation batches hold it shared; the integrity auditor takes it
    exclusively while applying a repair plan.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def shared(self, *, timeout: float | None = None) -> Iterator[None]:
        with self._cond:
            ready = self._cond.wait_for(
                lambda: not self._writer and self._waiting_writers == 0,
                timeout=timeout,
            )
            if not ready:
                raise StoreTimeoutError("waiting for shared store access")
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def exclusive(self, *, timeout: float | None = None) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            try:
                ready = self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0,
                    timeout=timeout,
                )
            finally:
                self._waiting_writers -= 1
            if not ready:
                self._cond.notify_all()
                raise StoreTimeoutError("waiting for exclusive store access")
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass(slots=True)
class StoreGuard:
    """Locks shared by every reconciler and auditor working on one store."""

    keys: KeyLocks = field(default_factory=KeyLocks)
    access: ReadWriteLock = field(default_factory=ReadWriteLock)
