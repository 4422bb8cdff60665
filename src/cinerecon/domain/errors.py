"""Error taxonomy for reconciliation and integrity repair.

Per-row errors are caught by the reconciler, reported to diagnostics and
counted in the batch summary; none of them aborts a batch.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from cinerecon.domain.model import EntityType


class ReconciliationError(Exception):
    """Base class for errors raised while reconciling one row."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class ValidationError(ReconciliationError):
    """A required field is missing or a value failed date/enum/identifier normalization."""

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}")


class AmbiguousMatchError(ReconciliationError):
    """A match rule selected more than one live candidate."""

    def __init__(
        self,
        entity_type: EntityType,
        candidate_ids: Sequence[UUID],
        *,
        reason: str = "multiple_candidates",
    ) -> None:
        self.entity_type = entity_type
        self.candidate_ids = tuple(candidate_ids)
        self.reason = reason
        ids = ", ".join(str(candidate_id) for candidate_id in self.candidate_ids)
        super().__init__(f"{entity_type.value} match is ambiguous ({reason}): {ids}")


class ReferentialGapError(ReconciliationError):
    """No related entity exists where the row logically implies one."""

    def __init__(self, entity_type: EntityType, reason: str) -> None:
        self.entity_type = entity_type
        self.reason = reason
        super().__init__(f"{entity_type.value}: {reason}")


class StoreTimeoutError(ReconciliationError):
    """A canonical store operation exceeded its time bound."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Store operation timed out: {operation}")


class InvariantViolationError(ReconciliationError):
    """An engine invariant could not be upheld (e.g. suffix search kept racing)."""


class DuplicateKeyError(Exception):
    """Raised by a store when a unique natural key is already taken at write time."""

    def __init__(self, field: str, value: str | None = None) -> None:
        self.field = field
        self.value = value
        detail = f"{field}={value!r}" if value is not None else field
        super().__init__(f"Duplicate natural key: {detail}")
