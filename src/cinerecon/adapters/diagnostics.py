"""Diagnostics sinks: in-memory, logging and JSON-lines."""

from __future__ import annotations

import json
import logging
import threading
from typing import TYPE_CHECKING, Final, TextIO

from cinerecon.domain.model import Outcome

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path
    from types import TracebackType

    from cinerecon.domain.ports import Diagnostic, DiagnosticsSink

log = logging.getLogger(__name__)

_LEVEL_BY_OUTCOME: Final[dict[Outcome, int]] = {
    Outcome.CREATED: logging.INFO,
    Outcome.UPDATED: logging.INFO,
    Outcome.MATCHED: logging.DEBUG,
    Outcome.SKIPPED: logging.WARNING,
    Outcome.AMBIGUOUS: logging.WARNING,
    Outcome.ORPHANED: logging.WARNING,
    Outcome.FAILED: logging.ERROR,
}


class CollectingDiagnosticsSink:
    """Keeps every diagnostic in memory; safe to share between worker threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[Diagnostic] = []

    def emit(self, diagnostic: Diagnostic) -> None:
        with self._lock:
            self._records.append(diagnostic)

    @property
    def records(self) -> list[Diagnostic]:
        with self._lock:
            return list(self._records)

    def by_outcome(self, outcome: Outcome) -> list[Diagnostic]:
        return [record for record in self.records if record.outcome is outcome]


class LoggingDiagnosticsSink:
    """Mirrors diagnostics into the log at a level matching the outcome."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._log = logger or log

    def emit(self, diagnostic: Diagnostic) -> None:
        row = "-" if diagnostic.row_index is None else str(diagnostic.row_index)
        self._log.log(
            _LEVEL_BY_OUTCOME[diagnostic.outcome],
            "row=%s %s %s%s",
            row,
            diagnostic.entity_type.value,
            diagnostic.outcome.value,
            f" ({diagnostic.reason})" if diagnostic.reason else "",
        )


class JsonLinesDiagnosticsSink:
    """Appends one JSON object per diagnostic to a report file."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._handle: TextIO | None = None

    def __enter__(self) -> JsonLinesDiagnosticsSink:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = self.path.open("w", encoding="utf-8")
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    def emit(self, diagnostic: Diagnostic) -> None:
        if self._handle is None:
            raise RuntimeError("JsonLinesDiagnosticsSink used outside its context")
        line = json.dumps(diagnostic.as_dict(), ensure_ascii=False)
        with self._lock:
            self._handle.write(line + "\n")

    def close(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.close()
                self._handle = None


class FanOutDiagnosticsSink:
    """Forwards every diagnostic to several sinks."""

    def __init__(self, sinks: Iterable[DiagnosticsSink]) -> None:
        self._sinks = tuple(sinks)

    def emit(self, diagnostic: Diagnostic) -> None:
        for sink in self._sinks:
            sink.emit(diagnostic)
