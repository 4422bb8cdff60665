"""Row sources reading spreadsheet exports."""

from __future__ import annotations

from .schema import ROW_MODELS, RowModel, snake_case
from .sources import CsvRowSource, JsonLinesRowSource, RowSourceError, open_row_source

__all__ = [
    "ROW_MODELS",
    "CsvRowSource",
    "JsonLinesRowSource",
    "RowModel",
    "RowSourceError",
    "open_row_source",
    "snake_case",
]
