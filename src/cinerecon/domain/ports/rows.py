"""Row source port."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

type RawRow = Mapping[str, object]


@dataclass(frozen=True, slots=True)
class UnreadableRow:
    """Stands in for a source record that could not be read as a row at all.

    The reconciler reports it as a skipped row, so row numbering stays aligned
    with the source and the rest of the batch still runs.
    """

    location: str
    reason: str


type SourceRow = RawRow | UnreadableRow


@runtime_checkable
class RowSource(Protocol):
    """Lazy, finite, restartable sequence of raw rows in stable source order.

    Every call to ``__iter__`` starts again from the first row. Field names are
    the canonical snake_case names (``serial_number``, ``site_name`` ...).
    """

    def __iter__(self) -> Iterator[SourceRow]: ...
