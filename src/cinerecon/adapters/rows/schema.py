"""Pydantic models mapping spreadsheet export headers onto canonical field names.

Source sheets were exported by hand over several years and use a handful of
header spellings for the same column (``serialNumber``, ``SerialNumber``,
``unitSerial`` ...). Values stay untyped here; the reconciliation normalizer
owns their interpretation.
"""

from __future__ import annotations

import re
from typing import Any, ClassVar, Final

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from cinerecon.domain.model import RecordKind

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_NON_WORD = re.compile(r"[^0-9a-zA-Z]+")


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def snake_case(header: str) -> str:
    """``customerErrorDate`` / ``Customer Error Date`` -> ``customer_error_date``."""

    spaced = _CAMEL_BOUNDARY.sub("_", header.strip())
    return _NON_WORD.sub("_", spaced).strip("_").lower()


def _column(*aliases: str) -> Any:
    return Field(default=None, validation_alias=AliasChoices(*aliases))


class RowModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    KIND: ClassVar[RecordKind]

    normalize_blanks = field_validator("*", mode="before")(_blank_to_none)

    def to_raw(self) -> dict[str, object]:
        """Canonical snake_case mapping; undeclared columns keep a snake_case name."""

        raw: dict[str, object] = {name: getattr(self, name) for name in type(self).model_fields}
        for header, value in (self.model_extra or {}).items():
            name = snake_case(header)
            if not name or name in raw:
                continue
            raw[name] = _blank_to_none(value)
        return raw


_SITE_NAME = ("site_name", "siteName", "SiteName", "Site Name", "site", "Site")
_MODEL_NO = (
    "model_no",
    "modelNo",
    "ModelNo",
    "model",
    "unitModel",
    "UnitModel",
    "productName",
)
_SERIAL = (
    "serial_number",
    "serialNumber",
    "SerialNumber",
    "Serial Number",
    "serial",
    "unitSerial",
    "UnitSerial",
)
_AUDI_NO = ("audi_no", "audiNo", "AudiNo", "audiNumber", "AudiNumber", "Audi No", "audi")


class SiteRow(RowModel):
    KIND: ClassVar[RecordKind] = RecordKind.SITE

    site_name: Any = _column(*_SITE_NAME)


class ProjectorModelRow(RowModel):
    KIND: ClassVar[RecordKind] = RecordKind.PROJECTOR_MODEL

    model_no: Any = _column(*_MODEL_NO)
    manufacturer: Any = _column("manufacturer", "Manufacturer")
    specifications: Any = _column("specifications", "Specifications")


class ProjectorRow(ProjectorModelRow):
    KIND: ClassVar[RecordKind] = RecordKind.PROJECTOR

    serial_number: Any = _column(*_SERIAL)
    status: Any = _column("status", "Status")
    installation_date: Any = _column("installation_date", "installationDate", "InstallationDate")


class AudiRow(ProjectorRow):
    KIND: ClassVar[RecordKind] = RecordKind.AUDI

    site_name: Any = _column(*_SITE_NAME)
    audi_no: Any = _column(*_AUDI_NO)


class CaseRow(RowModel):
    # remaining columns are carried through as case payload
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    serial_number: Any = _column(*_SERIAL)
    site_name: Any = _column(*_SITE_NAME)
    model_no: Any = _column(*_MODEL_NO)
    audi_no: Any = _column(*_AUDI_NO)


class DtrRow(CaseRow):
    KIND: ClassVar[RecordKind] = RecordKind.DTR

    case_number: Any = _column("case_number", "caseNumber", "CaseNumber", "Case Number")
    error_date: Any = _column("error_date", "errorDate", "ErrorDate", "Error Date")
    call_status: Any = _column("call_status", "callStatus", "CallStatus", "Call Status")
    case_severity: Any = _column("case_severity", "caseSeverity", "CaseSeverity", "Severity")


class RmaRow(CaseRow):
    KIND: ClassVar[RecordKind] = RecordKind.RMA

    call_log_number: Any = _column(
        "call_log_number", "callLogNumber", "CallLogNumber", "Call Log Number"
    )
    rma_number: Any = _column("rma_number", "rmaNumber", "RmaNumber", "RMA Number")
    rma_raised_date: Any = _column("rma_raised_date", "rmaRaisedDate", "RmaRaisedDate")
    rma_type: Any = _column("rma_type", "rmaType", "RmaType", "RMA Type")
    status: Any = _column("status", "Status")
    customer_error_date: Any = _column("customer_error_date", "customerErrorDate")
    shipped_date: Any = _column("shipped_date", "shippedDate")
    return_shipped_date: Any = _column("return_shipped_date", "returnShippedDate")


ROW_MODELS: Final[dict[RecordKind, type[RowModel]]] = {
    model.KIND: model for model in (SiteRow, ProjectorModelRow, ProjectorRow, AudiRow, DtrRow, RmaRow)
}
