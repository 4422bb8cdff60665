"""Service cases (DTR and RMA share one shape for reconciliation)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

from cinerecon.domain.model.base import Entity
from cinerecon.domain.model.enums import CaseKeyField, CaseKind, EntityType

if TYPE_CHECKING:
    from datetime import date
    from uuid import UUID


@dataclass(eq=False, kw_only=True)
class ServiceCase(Entity):
    ENTITY_TYPE: ClassVar[EntityType] = EntityType.CASE

    kind: CaseKind
    serial_number: str
    case_number: str | None = None
    call_log_number: str | None = None
    rma_number: str | None = None
    site_id: UUID | None = None
    audi_id: UUID | None = None
    status: str | None = None
    case_type: str | None = None
    severity: str | None = None
    opened_on: date | None = None
    # fields carried through from the source sheet; never interpreted
    payload: dict[str, Any] = field(default_factory=dict[str, Any])

    def key(self, key_field: CaseKeyField) -> str | None:
        return getattr(self, key_field.value)
