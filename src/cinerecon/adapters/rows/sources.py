"""File-backed row sources (CSV and JSON-lines exports)."""

from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, cast

from pydantic import ValidationError as PydanticValidationError

from cinerecon.domain.ports import UnreadableRow

from .schema import ROW_MODELS

if TYPE_CHECKING:
    from collections.abc import Iterator

    from cinerecon.domain.model import RecordKind
    from cinerecon.domain.ports import RowSource, SourceRow

    from .schema import RowModel

log = logging.getLogger(__name__)


class RowSourceError(ValueError):
    """Raised when an export file cannot be read as rows."""


class _FileRowSource:
    def __init__(self, path: Path | str, kind: RecordKind, *, encoding: str = "utf-8-sig") -> None:
        self.path = Path(path)
        self.kind = kind
        self.encoding = encoding
        self._model: type[RowModel] = ROW_MODELS[kind]

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self.path)!r}, {self.kind.value!r})"

    def _unreadable(self, line_number: int, reason: str) -> UnreadableRow:
        location = f"{self.path}:{line_number}"
        log.debug("Unreadable %s row at %s: %s", self.kind.value, location, reason)
        return UnreadableRow(location=location, reason=reason)

    def _to_raw(self, record: dict[str, object], line_number: int) -> SourceRow:
        try:
            return self._model.model_validate(record).to_raw()
        except PydanticValidationError as exc:
            return self._unreadable(line_number, f"invalid {self.kind.value} row: {exc}")


class CsvRowSource(_FileRowSource):
    """Rows of a CSV export with a header line; re-reads the file on every iteration."""

    def __init__(
        self,
        path: Path | str,
        kind: RecordKind,
        *,
        encoding: str = "utf-8-sig",
        delimiter: str = ",",
    ) -> None:
        super().__init__(path, kind, encoding=encoding)
        self.delimiter = delimiter

    def __iter__(self) -> Iterator[SourceRow]:
        with self.path.open(newline="", encoding=self.encoding) as handle:
            reader = csv.DictReader(handle, delimiter=self.delimiter)
            for record in reader:
                # cells beyond the header row land under a ``None`` key
                yield self._to_raw(
                    {key: value for key, value in record.items() if key is not None},
                    reader.line_num,
                )


class JsonLinesRowSource(_FileRowSource):
    """One JSON object per line; blank lines are ignored.

    A line that is not a JSON object is yielded as an :class:`UnreadableRow`
    rather than ending the iteration.
    """

    def __iter__(self) -> Iterator[SourceRow]:
        with self.path.open(encoding=self.encoding) as handle:
            for line_number, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError as exc:
                    yield self._unreadable(line_number, f"invalid JSON: {exc}")
                    continue
                if not isinstance(record, dict):
                    yield self._unreadable(line_number, "expected a JSON object")
                    continue
                yield self._to_raw(cast(dict[str, object], record), line_number)


def open_row_source(path: Path | str, kind: RecordKind) -> RowSource:
    """Pick a row source by file extension (``.csv``, ``.jsonl``/``.ndjson``)."""

    resolved = Path(path)
    suffix = resolved.suffix.lower()
    if suffix == ".csv":
        return CsvRowSource(resolved, kind)
    if suffix in {".jsonl", ".ndjson"}:
        return JsonLinesRowSource(resolved, kind)
    raise RowSourceError(f"Unsupported row file type: {resolved.name}")
