"""Whole-row normalization and required-field validation.

A row is normalized completely before any store access, so a row that fails
validation never creates a partial entity.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final

from cinerecon.domain.errors import ValidationError
from cinerecon.domain.model import (
    CaseKeyField,
    CaseKind,
    ProjectorStatus,
    RecordKind,
)

from .normalize import FieldKind, normalize, normalize_date, normalize_identifier

if TYPE_CHECKING:
    from datetime import date

    from cinerecon.domain.ports import RawRow


REQUIRED_FIELDS: Final[dict[RecordKind, tuple[str, ...]]] = {
    RecordKind.SITE: ("site_name",),
    RecordKind.PROJECTOR_MODEL: ("model_no",),
    RecordKind.PROJECTOR: ("serial_number", "model_no"),
    RecordKind.AUDI: ("audi_no", "site_name"),
    RecordKind.DTR: ("case_number", "serial_number", "error_date"),
    RecordKind.RMA: ("serial_number", "rma_raised_date"),
}

# Fields consumed by the engine; everything else on a case row is payload.
_CASE_CORE_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "case_number",
        "call_log_number",
        "rma_number",
        "serial_number",
        "site_name",
        "model_no",
        "error_date",
        "rma_raised_date",
        "call_status",
        "status",
        "case_severity",
        "rma_type",
    }
)


@dataclass(frozen=True, slots=True, kw_only=True)
class CaseKeys:
    """Natural keys of a case row: primary first, optional secondary."""

    primary_field: CaseKeyField
    primary: str | None
    secondary_field: CaseKeyField | None = None
    secondary: str | None = None

    def present(self) -> tuple[tuple[CaseKeyField, str], ...]:
        keys: list[tuple[CaseKeyField, str]] = []
        if self.primary is not None:
            keys.append((self.primary_field, self.primary))
        if self.secondary_field is not None and self.secondary is not None:
            keys.append((self.secondary_field, self.secondary))
        return tuple(keys)


@dataclass(frozen=True, slots=True, kw_only=True)
class CaseFields:
    kind: CaseKind
    keys: CaseKeys
    status: str | None = None
    case_type: str | None = None
    severity: str | None = None
    opened_on: date | None = None
    payload: dict[str, Any] = field(default_factory=dict[str, Any])


@dataclass(frozen=True, slots=True, kw_only=True)
class NormalizedRow:
    """One source row after normalization; ``None`` fields were Empty."""

    row_index: int
    kind: RecordKind
    site_name: str | None = None
    model_no: str | None = None
    manufacturer: str | None = None
    specifications: str | None = None
    serial_number: str | None = None
    projector_status: ProjectorStatus | None = None
    installation_date: date | None = None
    audi_no: str | None = None
    case: CaseFields | None = None

    @property
    def case_keys(self) -> tuple[tuple[CaseKind, CaseKeyField, str], ...]:
        """Natural case keys this row touches (used to group rows for workers)."""
        if self.case is None:
            return ()
        return tuple((self.case.kind, key_field, key) for key_field, key in self.case.keys.present())


def normalize_row(kind: RecordKind, raw: RawRow, *, row_index: int) -> NormalizedRow:
    """Normalize and validate ``raw``; raises ``ValidationError`` on the first bad field."""

    values: dict[str, Any] = {
        "site_name": normalize(FieldKind.NAME, raw.get("site_name")),
        "model_no": normalize(FieldKind.IDENTIFIER, raw.get("model_no")),
        "serial_number": normalize(FieldKind.IDENTIFIER, raw.get("serial_number")),
        "audi_no": normalize(FieldKind.IDENTIFIER, raw.get("audi_no")),
    }
    if kind in (RecordKind.PROJECTOR_MODEL, RecordKind.PROJECTOR, RecordKind.AUDI):
        values["manufacturer"] = normalize(FieldKind.NAME, raw.get("manufacturer"))
        values["specifications"] = normalize(FieldKind.TEXT, raw.get("specifications"))
    if kind is RecordKind.PROJECTOR:
        values["projector_status"] = normalize(
            FieldKind.PROJECTOR_STATUS, raw.get("status"), field="status"
        )
        values["installation_date"] = normalize(
            FieldKind.DATE, raw.get("installation_date"), field="installation_date"
        )

    case: CaseFields | None = None
    if kind is RecordKind.DTR:
        case = _dtr_fields(raw)
    elif kind is RecordKind.RMA:
        case = _rma_fields(raw)

    _require(kind, values, case)
    return NormalizedRow(row_index=row_index, kind=kind, case=case, **values)


def _dtr_fields(raw: RawRow) -> CaseFields:
    keys = CaseKeys(
        primary_field=CaseKeyField.CASE_NUMBER,
        primary=normalize_identifier(raw.get("case_number")),
    )
    return CaseFields(
        kind=CaseKind.DTR,
        keys=keys,
        status=_enum_value(FieldKind.DTR_STATUS, raw.get("call_status"), "call_status"),
        severity=_enum_value(FieldKind.SEVERITY, raw.get("case_severity"), "case_severity"),
        opened_on=normalize_date(raw.get("error_date"), field="error_date"),
        payload=_payload(raw),
    )


def _rma_fields(raw: RawRow) -> CaseFields:
    keys = CaseKeys(
        primary_field=CaseKeyField.CALL_LOG_NUMBER,
        primary=normalize_identifier(raw.get("call_log_number")),
        secondary_field=CaseKeyField.RMA_NUMBER,
        secondary=normalize_identifier(raw.get("rma_number")),
    )
    payload = _payload(raw)
    for date_field in ("customer_error_date", "shipped_date", "return_shipped_date"):
        if date_field in payload:
            parsed = normalize_date(raw.get(date_field), field=date_field)
            payload[date_field] = parsed.isoformat() if parsed is not None else None
    return CaseFields(
        kind=CaseKind.RMA,
        keys=keys,
        status=_enum_value(FieldKind.RMA_STATUS, raw.get("status"), "status"),
        case_type=_enum_value(FieldKind.RMA_TYPE, raw.get("rma_type"), "rma_type"),
        opened_on=normalize_date(raw.get("rma_raised_date"), field="rma_raised_date"),
        payload=payload,
    )


def _enum_value(kind: FieldKind, raw: object, field_name: str) -> str | None:
    value = normalize(kind, raw, field=field_name)
    return str(value) if value is not None else None


def _payload(raw: RawRow) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for name, value in raw.items():
        if name in _CASE_CORE_FIELDS:
            continue
        text = normalize(FieldKind.TEXT, value)
        if text is not None:
            payload[name] = text
    return payload


def _require(kind: RecordKind, values: dict[str, Any], case: CaseFields | None) -> None:
    for name in REQUIRED_FIELDS[kind]:
        if name in values:
            if values[name] is None:
                raise ValidationError(name, "required field is missing")
            continue
        if case is None:
            continue
        if name == "case_number" and case.keys.primary is None:
            raise ValidationError(name, "required field is missing")
        if name in ("error_date", "rma_raised_date") and case.opened_on is None:
            raise ValidationError(name, "required field is missing")
    if kind is RecordKind.RMA and case is not None and not case.keys.present():
        raise ValidationError("call_log_number", "either call_log_number or rma_number is required")
