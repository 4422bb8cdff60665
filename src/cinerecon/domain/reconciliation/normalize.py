"""Field normalization: raw spreadsheet cells into comparable values.

All functions here are pure. ``None`` is the Empty value: a blank cell or a
placeholder never becomes a key. Values that cannot be normalized raise
``ValidationError`` naming the field and the reason.
"""

from __future__ import annotations

import math
import re
import unicodedata
from datetime import date, datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING, Final

from cinerecon.domain.errors import ValidationError
from cinerecon.domain.model import DtrStatus, ProjectorStatus, RmaStatus, RmaType, Severity

if TYPE_CHECKING:
    from collections.abc import Mapping


class FieldKind(StrEnum):
    IDENTIFIER = "identifier"
    NAME = "name"
    TEXT = "text"
    DATE = "date"
    PROJECTOR_STATUS = "projector_status"
    DTR_STATUS = "dtr_status"
    RMA_STATUS = "rma_status"
    RMA_TYPE = "rma_type"
    SEVERITY = "severity"


PLACEHOLDERS: Final[frozenset[str]] = frozenset({"-", "—", "–", '"-"', "'-'"})

# Spreadsheet day numbers count from 1899-12-30 (day 25569 is 1970-01-01).
SPREADSHEET_EPOCH: Final[date] = date(1899, 12, 30)

type EnumValue = ProjectorStatus | DtrStatus | RmaStatus | RmaType | Severity

ENUM_TYPES: Final[dict[FieldKind, type[EnumValue]]] = {
    FieldKind.PROJECTOR_STATUS: ProjectorStatus,
    FieldKind.DTR_STATUS: DtrStatus,
    FieldKind.RMA_STATUS: RmaStatus,
    FieldKind.RMA_TYPE: RmaType,
    FieldKind.SEVERITY: Severity,
}

# Keys are already lowercased with whitespace collapsed to underscores.
SYNONYMS: Final[Mapping[FieldKind, Mapping[str, EnumValue]]] = {
    FieldKind.PROJECTOR_STATUS: {
        "in_service": ProjectorStatus.ACTIVE,
        "working": ProjectorStatus.ACTIVE,
        "under_maintenance": ProjectorStatus.MAINTENANCE,
        "under_service": ProjectorStatus.MAINTENANCE,
    },
    FieldKind.DTR_STATUS: {
        "observation": DtrStatus.OPEN,
        "waiting_cust_responses": DtrStatus.IN_PROGRESS,
        "waiting_customer_response": DtrStatus.IN_PROGRESS,
        "in-progress": DtrStatus.IN_PROGRESS,
        "rma_part_return_to_cds": DtrStatus.CLOSED,
    },
    FieldKind.RMA_STATUS: {
        "faulty_in_transit_to_ascomp": RmaStatus.FAULTY_IN_TRANSIT_TO_CDS,
        "faulty-in-transit-to-cds": RmaStatus.FAULTY_IN_TRANSIT_TO_CDS,
        "rma_part_return_to_cds": RmaStatus.FAULTY_IN_TRANSIT_TO_CDS,
        "rma-raised-yet-to-deliver": RmaStatus.RMA_RAISED_YET_TO_DELIVER,
        "canceled": RmaStatus.CANCELLED,
    },
    FieldKind.RMA_TYPE: {
        "rma_ci": RmaType.RMA_CL,
        "rma_cl": RmaType.RMA_CL,
        "lamp": RmaType.LAMPS,
    },
    FieldKind.SEVERITY: {
        "major": Severity.HIGH,
        "minor": Severity.MEDIUM,
    },
}

# Known site-name typos, applied word by word to casefolded names.
SITE_TYPO_CORRECTIONS: Final[Mapping[str, str]] = {
    "ghandhinagar": "gandhinagar",
    "gandhinager": "gandhinagar",
    "ahmedbad": "ahmedabad",
    "banglore": "bangalore",
}

_WHITESPACE = re.compile(r"\s+")


def normalize(kind: FieldKind, raw: object, *, field: str | None = None) -> object | None:
    """Normalize ``raw`` according to ``kind``; ``None`` means Empty."""

    label = field or kind.value
    if kind is FieldKind.IDENTIFIER:
        return normalize_identifier(raw)
    if kind is FieldKind.NAME:
        return normalize_name(raw)
    if kind is FieldKind.TEXT:
        return normalize_text(raw)
    if kind is FieldKind.DATE:
        return normalize_date(raw, field=label)
    return normalize_enum(kind, raw, field=label)


def _cell_text(raw: object) -> str | None:
    if raw is None:
        return None
    if isinstance(raw, bool):
        return str(raw).lower()
    if isinstance(raw, float):
        if not math.isfinite(raw):
            return None
        if raw.is_integer():
            return str(int(raw))
        return repr(raw)
    text = unicodedata.normalize("NFC", str(raw)).strip()
    if not text or text in PLACEHOLDERS:
        return None
    return text


def normalize_identifier(raw: object) -> str | None:
    """Serial numbers, case numbers, model numbers: trimmed and uppercased."""

    text = _cell_text(raw)
    if text is None:
        return None
    return text.upper()


def normalize_name(raw: object) -> str | None:
    """User-facing names: trimmed, internal whitespace collapsed, case preserved."""

    text = _cell_text(raw)
    if text is None:
        return None
    return _WHITESPACE.sub(" ", text)


def normalize_text(raw: object) -> str | None:
    return _cell_text(raw)


def _enum_token(text: str) -> str:
    return _WHITESPACE.sub("_", text.strip().lower())


def normalize_enum(kind: FieldKind, raw: object, *, field: str | None = None) -> EnumValue | None:
    """Map an enum-like cell through the synonym table or an exact enum value."""

    enum_type = ENUM_TYPES.get(kind)
    if enum_type is None:
        raise ValueError(f"{kind} is not an enum field kind")
    text = _cell_text(raw)
    if text is None:
        return None
    token = _enum_token(text)
    synonym = SYNONYMS.get(kind, {}).get(token)
    if synonym is not None:
        return synonym
    for member in enum_type:
        if member.value.lower() == token:
            return member
    raise ValidationError(field or kind.value, f"unknown {kind.value} value {text!r}")


# Text dates found in the sheets besides ISO. Slashed dates are month first
# (US order); a day-first "15/03/2024" is rejected rather than guessed.
TEXT_DATE_FORMATS: Final[tuple[str, ...]] = (
    "%m/%d/%Y",
    "%m/%d/%y",
    "%d-%b-%Y",
    "%d-%b-%y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%B %d %Y",
)


def normalize_date(raw: object, *, field: str = "date") -> date | None:
    """Accept a spreadsheet day number, an ISO or sheet-style string, or a date/datetime."""

    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, bool):
        raise ValidationError(field, f"invalid date {raw!r}")
    if isinstance(raw, int | float):
        return _from_day_number(float(raw), field=field)
    text = _cell_text(raw)
    if text is None:
        return None
    try:
        if _looks_iso(text):
            return date.fromisoformat(text[:10])
        days = float(text)
    except ValueError as exc:
        parsed = _from_text(text)
        if parsed is None:
            raise ValidationError(field, f"invalid date {text!r}") from exc
        return parsed
    return _from_day_number(days, field=field)


def _looks_iso(text: str) -> bool:
    return len(text) >= 10 and text[4] == "-" and text[7] == "-"


def _from_text(text: str) -> date | None:
    for fmt in TEXT_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _from_day_number(days: float, *, field: str) -> date:
    if not math.isfinite(days) or days < 1:
        raise ValidationError(field, f"invalid spreadsheet day number {days!r}")
    try:
        return SPREADSHEET_EPOCH + timedelta(days=math.floor(days))
    except OverflowError as exc:
        raise ValidationError(field, f"spreadsheet day number out of range {days!r}") from exc


def site_match_key(name: str, *, corrections: Mapping[str, str] | None = None) -> str:
    """Comparison key for duplicate-site detection.

    Casefolded, whitespace collapsed, punctuation dropped and known typos
    replaced word by word. ``corrections`` extends the built-in table.
    """

    table = dict(SITE_TYPO_CORRECTIONS)
    if corrections:
        table.update(corrections)
    folded = unicodedata.normalize("NFC", name).casefold()
    words = re.sub(r"[^\w\s]", " ", folded).split()
    return " ".join(table.get(word, word) for word in words)
