"""Diagnostics sink port."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from uuid import UUID

    from cinerecon.domain.model import EntityType, Outcome


@dataclass(frozen=True, slots=True, kw_only=True)
class Diagnostic:
    """Structured record of one reconciliation or audit outcome."""

    row_index: int | None
    entity_type: EntityType
    outcome: Outcome
    reason: str | None = None
    entity_id: UUID | None = None
    error_kind: str | None = None
    field: str | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "row_index": self.row_index,
            "entity_type": self.entity_type.value,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "entity_id": str(self.entity_id) if self.entity_id is not None else None,
            "error_kind": self.error_kind,
            "field": self.field,
        }


@runtime_checkable
class DiagnosticsSink(Protocol):
    """Receives diagnostics; the core never reads them back."""

    def emit(self, diagnostic: Diagnostic) -> None: ...
