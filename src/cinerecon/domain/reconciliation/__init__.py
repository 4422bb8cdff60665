"""Identity resolution and reconciliation of spreadsheet rows.

Layered flow per row:
1) normalize every field of the row (``rows``/``normalize``)
2) match each entity type against live store candidates (``match``)
3) disambiguate colliding case keys (``disambiguate``)
4) create, link or correct canonical entities in dependency order (``engine``)
"""

from __future__ import annotations

from .contracts import AmbiguousMatch, MatchResult, MatchStatus, NoMatch, UniqueMatch
from .disambiguate import DisambiguationIndex, assign_unique_key, key_suffix
from .engine import BatchSummary, Reconciler, RowResult, StageResult, group_rows_by_case_keys
from .locks import KeyLocks, ReadWriteLock, StoreGuard
from .normalize import FieldKind, normalize, site_match_key
from .rows import CaseKeys, NormalizedRow, normalize_row

__all__ = [
    "AmbiguousMatch",
    "BatchSummary",
    "CaseKeys",
    "DisambiguationIndex",
    "FieldKind",
    "KeyLocks",
    "MatchResult",
    "MatchStatus",
    "NoMatch",
    "NormalizedRow",
    "ReadWriteLock",
    "Reconciler",
    "RowResult",
    "StageResult",
    "StoreGuard",
    "UniqueMatch",
    "assign_unique_key",
    "group_rows_by_case_keys",
    "key_suffix",
    "normalize",
    "normalize_row",
    "site_match_key",
]
