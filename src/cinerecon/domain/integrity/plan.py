"""Repair plan types produced by the integrity checks.

A plan is inert data: producing one never touches the store. Applying it is a
separate, explicit step (``IntegrityAuditor.apply``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from uuid import UUID

    from cinerecon.domain.model import CaseKind


class AuditCheck(StrEnum):
    DUPLICATE_SITES = "duplicate_sites"
    DUPLICATE_AUDIS = "duplicate_audis"
    ORPHANED_CASES = "orphaned_cases"


@dataclass(frozen=True, slots=True, kw_only=True)
class SiteMerge:
    """Fold ``merge_ids`` into ``keep_id``; their audis and cases move first."""

    match_key: str
    keep_id: UUID
    keep_name: str
    merge_ids: tuple[UUID, ...]
    merge_names: tuple[str, ...]
    audi_counts: dict[UUID, int] = field(default_factory=dict["UUID", int])

    def as_dict(self) -> dict[str, Any]:
        return {
            "match_key": self.match_key,
            "keep": {"id": str(self.keep_id), "name": self.keep_name},
            "merge": [
                {"id": str(site_id), "name": name, "audis": self.audi_counts.get(site_id, 0)}
                for site_id, name in zip(self.merge_ids, self.merge_names, strict=True)
            ],
            "keep_audis": self.audi_counts.get(self.keep_id, 0),
        }


@dataclass(frozen=True, slots=True, kw_only=True)
class AudiMerge:
    """Fold duplicate audis of one site into ``keep_id``; their cases move first."""

    site_id: UUID
    audi_no: str
    projector_id: UUID | None
    keep_id: UUID
    merge_ids: tuple[UUID, ...]
    case_counts: dict[UUID, int] = field(default_factory=dict["UUID", int])

    def as_dict(self) -> dict[str, Any]:
        return {
            "site_id": str(self.site_id),
            "audi_no": self.audi_no,
            "projector_id": str(self.projector_id) if self.projector_id is not None else None,
            "keep": {"id": str(self.keep_id), "cases": self.case_counts.get(self.keep_id, 0)},
            "merge": [
                {"id": str(audi_id), "cases": self.case_counts.get(audi_id, 0)}
                for audi_id in self.merge_ids
            ],
        }


@dataclass(frozen=True, slots=True, kw_only=True)
class OrphanedCase:
    """Reported for manual review only; never deleted by ``apply``."""

    case_id: UUID
    kind: CaseKind
    serial_number: str
    natural_key: str | None
    reason: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "case_id": str(self.case_id),
            "kind": self.kind.value,
            "serial_number": self.serial_number,
            "natural_key": self.natural_key,
            "reason": self.reason,
        }


@dataclass(frozen=True, slots=True, kw_only=True)
class SiteSuggestion:
    """Two sites whose names look alike but did not fall into one merge group."""

    site_ids: tuple[UUID, UUID]
    names: tuple[str, str]
    score: float

    def as_dict(self) -> dict[str, Any]:
        return {
            "site_ids": [str(site_id) for site_id in self.site_ids],
            "names": list(self.names),
            "score": round(self.score, 1),
        }


@dataclass(slots=True)
class RepairPlan:
    checks: tuple[AuditCheck, ...]
    site_merges: list[SiteMerge] = field(default_factory=list["SiteMerge"])
    audi_merges: list[AudiMerge] = field(default_factory=list["AudiMerge"])
    orphaned_cases: list[OrphanedCase] = field(default_factory=list["OrphanedCase"])
    suggestions: list[SiteSuggestion] = field(default_factory=list["SiteSuggestion"])

    @property
    def has_changes(self) -> bool:
        return bool(self.site_merges or self.audi_merges)

    def as_dict(self) -> dict[str, Any]:
        return {
            "checks": [check.value for check in self.checks],
            "site_merges": [merge.as_dict() for merge in self.site_merges],
            "audi_merges": [merge.as_dict() for merge in self.audi_merges],
            "orphaned_cases": [orphan.as_dict() for orphan in self.orphaned_cases],
            "suggestions": [suggestion.as_dict() for suggestion in self.suggestions],
        }


@dataclass(slots=True)
class RepairResult:
    """What ``apply`` actually changed."""

    sites_deleted: int = 0
    audis_moved: int = 0
    audis_deleted: int = 0
    cases_moved: int = 0
    cases_deleted: int = 0
    # plan entries whose entities changed since planning
    stale_entries: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "sites_deleted": self.sites_deleted,
            "audis_moved": self.audis_moved,
            "audis_deleted": self.audis_deleted,
            "cases_moved": self.cases_moved,
            "cases_deleted": self.cases_deleted,
            "stale_entries": self.stale_entries,
        }
