"""Deterministic suffixing of colliding case keys.

The first record to claim a natural key keeps it bare; later records get
``<key>-1``, ``<key>-2`` ... scanning strictly upward from the lowest free
suffix. Which record owns which variant is decided by processing order only.

``DisambiguationIndex`` replaces any module-level "seen keys" map: callers pass
one into a batch and get it back with the claims and issued keys of that batch.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from uuid import UUID

from cinerecon.domain.errors import DuplicateKeyError, InvariantViolationError

if TYPE_CHECKING:
    from collections.abc import Callable, Collection, Iterable, Mapping

    from cinerecon.domain.model import CaseKeyField, CaseKind

log = logging.getLogger(__name__)

type RowKey = tuple[str, int]
type KeyFamily = tuple[CaseKind, CaseKeyField, str]


def suffixed(base_key: str, suffix: int) -> str:
    return base_key if suffix == 0 else f"{base_key}-{suffix}"


def key_suffix(key: str, base_key: str) -> int | None:
    """Return the suffix of ``key`` within ``base_key``'s family.

    ``0`` for the bare key, ``n`` for ``<base>-n`` and ``None`` for keys outside
    the family (``-0`` and zero-padded suffixes are never issued, so they are
    not family members either).
    """

    if key == base_key:
        return 0
    prefix = f"{base_key}-"
    if not key.startswith(prefix):
        return None
    tail = key[len(prefix) :]
    if not tail.isdigit() or tail.startswith("0"):
        return None
    return int(tail)


def assign_unique_key(natural_key: str, existing_keys: Collection[str]) -> str:
    """Return ``natural_key`` if free, else its lowest free ``-n`` variant."""

    if natural_key not in existing_keys:
        return natural_key
    suffix = 1
    while suffixed(natural_key, suffix) in existing_keys:
        suffix += 1
    return suffixed(natural_key, suffix)


@dataclass(slots=True)
class DisambiguationIndex:
    """Per-run record of which row claimed which case and which keys were issued.

    A case claimed by one row is no longer a match candidate for any other row of
    the same source, which is what lets two identical rows in one batch end up as
    two cases. Replaying the same rows re-claims the same cases. Safe to share
    between worker threads.
    """

    claims: dict[UUID, RowKey] = field(default_factory=dict[UUID, RowKey])
    issued: dict[KeyFamily, set[str]] = field(default_factory=dict[KeyFamily, set[str]])
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def is_live(self, case_id: UUID, row: RowKey) -> bool:
        with self._lock:
            owner = self.claims.get(case_id)
        return owner is None or owner == row

    def claim(self, case_id: UUID, row: RowKey) -> None:
        with self._lock:
            owner = self.claims.setdefault(case_id, row)
        if owner != row:
            raise InvariantViolationError(
                f"case {case_id} already claimed by row {owner[1]} of {owner[0]}"
            )

    def issued_keys(self, family: KeyFamily) -> set[str]:
        with self._lock:
            return set(self.issued.get(family, ()))

    def record_issued(self, family: KeyFamily, key: str) -> None:
        with self._lock:
            self.issued.setdefault(family, set()).add(key)

    def claimed_by(self, row: RowKey) -> list[UUID]:
        with self._lock:
            return [case_id for case_id, owner in self.claims.items() if owner == row]


def assign_keys(
    kind: CaseKind,
    keys: Iterable[tuple[CaseKeyField, str]],
    *,
    snapshot: Callable[[CaseKeyField, str], set[str]],
    index: DisambiguationIndex,
) -> dict[CaseKeyField, str]:
    """Pick a free variant for every ``(field, base)`` pair.

    ``snapshot`` must query the store right before the write so that keys
    committed by concurrent writers are seen; keys issued earlier in the run are
    added from ``index`` so a suffix is never handed out twice.
    """

    assigned: dict[CaseKeyField, str] = {}
    for key_field, base_key in keys:
        taken = snapshot(key_field, base_key) | index.issued_keys((kind, key_field, base_key))
        assigned[key_field] = assign_unique_key(base_key, taken)
    return assigned


def record_assigned(
    kind: CaseKind,
    bases: Mapping[CaseKeyField, str],
    assigned: Mapping[CaseKeyField, str],
    *,
    index: DisambiguationIndex,
) -> None:
    for key_field, key in assigned.items():
        index.record_issued((kind, key_field, bases[key_field]), key)


def with_key_retries[T](
    operation: Callable[[int], T],
    *,
    max_attempts: int,
    what: str,
) -> T:
    """Run ``operation`` until it stops hitting ``DuplicateKeyError``.

    Each attempt is expected to take a fresh snapshot, assign and commit as one
    unit. A key that keeps being taken at write time means something outside
    the engine is racing us; after ``max_attempts`` this fails loudly.
    """

    last_error: DuplicateKeyError | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            return operation(attempt)
        except DuplicateKeyError as exc:
            last_error = exc
            log.warning(
                "Key for %s taken at write time (attempt %d/%d): %s",
                what,
                attempt,
                max_attempts,
                exc,
            )
    raise InvariantViolationError(
        f"Could not assign a unique key for {what} after {max_attempts} attempts"
    ) from last_error
