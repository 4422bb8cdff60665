"""Integrity auditor: plan repairs, then apply them explicitly.

``apply`` runs in one unit of work under exclusive store access, re-reads
every entity a plan entry names and skips entries that went stale since the
plan was made. Dependents always move before the entity they pointed at is
deleted.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from cinerecon.domain.model import EntityType, Outcome
from cinerecon.domain.ports import Diagnostic
from cinerecon.domain.reconciliation.locks import StoreGuard

from .checks import (
    DEFAULT_SUGGESTION_THRESHOLD,
    StoreSnapshot,
    find_orphaned_cases,
    plan_audi_merges,
    plan_site_merges,
    site_redirects,
    suggest_similar_sites,
)
from .plan import AuditCheck, RepairPlan, RepairResult

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping
    from uuid import UUID

    from cinerecon.domain.ports import (
        DiagnosticsSink,
        ReconciliationRepositories,
        ReconciliationUnitOfWork,
    )

    from .plan import AudiMerge, SiteMerge

log = logging.getLogger(__name__)


class IntegrityAuditor:
    def __init__(
        self,
        unit_of_work_factory: Callable[[], ReconciliationUnitOfWork],
        *,
        guard: StoreGuard | None = None,
        sink: DiagnosticsSink | None = None,
        site_typos: Mapping[str, str] | None = None,
        suggestion_threshold: float = DEFAULT_SUGGESTION_THRESHOLD,
        lock_timeout: float | None = None,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._guard = guard or StoreGuard()
        self._sink = sink
        self._site_typos = dict(site_typos or {})
        self._suggestion_threshold = suggestion_threshold
        self._lock_timeout = lock_timeout

    def plan(self, checks: Iterable[AuditCheck] | None = None) -> RepairPlan:
        """Run the selected checks (all by default) and return an unapplied plan."""

        selected = tuple(AuditCheck) if checks is None else tuple(dict.fromkeys(checks))
        with self._guard.access.shared(timeout=self._lock_timeout), self._uow_factory() as uow:
            repositories = uow.repositories
            snapshot = StoreSnapshot(
                sites=repositories.sites.find_many(),
                audis=repositories.audis.find_many(),
                projectors=repositories.projectors.find_many(),
                cases=repositories.cases.find_many(),
            )

        plan = RepairPlan(checks=selected)
        if AuditCheck.DUPLICATE_SITES in selected:
            plan.site_merges = plan_site_merges(
                snapshot.sites, snapshot.audis, corrections=self._site_typos
            )
            plan.suggestions = suggest_similar_sites(
                snapshot.sites,
                threshold=self._suggestion_threshold,
                corrections=self._site_typos,
            )
        if AuditCheck.DUPLICATE_AUDIS in selected:
            plan.audi_merges = plan_audi_merges(
                snapshot.audis, snapshot.cases, redirects=site_redirects(plan.site_merges)
            )
        if AuditCheck.ORPHANED_CASES in selected:
            plan.orphaned_cases = find_orphaned_cases(
                snapshot.cases, snapshot.projectors, snapshot.audis
            )
            for orphan in plan.orphaned_cases:
                self._emit(EntityType.CASE, Outcome.ORPHANED, orphan.case_id, orphan.reason)

        log.info(
            "Audit plan: %d site merges, %d audi merges, %d orphaned cases, %d suggestions",
            len(plan.site_merges),
            len(plan.audi_merges),
            len(plan.orphaned_cases),
            len(plan.suggestions),
        )
        return plan

    def apply(self, plan: RepairPlan) -> RepairResult:
        """Execute the merges of ``plan``; orphans and suggestions are never acted on."""

        result = RepairResult()
        if not plan.has_changes:
            return result
        with self._guard.access.exclusive(timeout=self._lock_timeout), self._uow_factory() as uow:
            repositories = uow.repositories
            emptied_sites: list[UUID] = []
            for site_merge in plan.site_merges:
                emptied_sites.extend(self._move_site_dependents(repositories, site_merge, result))
            for audi_merge in plan.audi_merges:
                self._merge_audis(repositories, audi_merge, result)
            for site_id in emptied_sites:
                repositories.sites.delete(site_id)
                result.sites_deleted += 1
                self._emit(EntityType.SITE, Outcome.UPDATED, site_id, "merged into surviving site")
            uow.commit()

        log.info("Applied repair plan: %s", result.as_dict())
        return result

    def delete_cases(self, case_ids: Iterable[UUID]) -> RepairResult:
        """Delete reviewed cases (typically orphans); an explicit operator action."""

        result = RepairResult()
        with self._guard.access.exclusive(timeout=self._lock_timeout), self._uow_factory() as uow:
            cases = uow.repositories.cases
            for case_id in dict.fromkeys(case_ids):
                if cases.get(case_id) is None:
                    log.warning("Case %s no longer exists; skipping", case_id)
                    result.stale_entries += 1
                    continue
                cases.delete(case_id)
                result.cases_deleted += 1
            uow.commit()
        log.info("Deleted %d cases", result.cases_deleted)
        return result

    def _move_site_dependents(
        self,
        repositories: ReconciliationRepositories,
        merge: SiteMerge,
        result: RepairResult,
    ) -> list[UUID]:
        if repositories.sites.get(merge.keep_id) is None:
            log.warning("Surviving site %s vanished since planning; skipping merge", merge.keep_id)
            result.stale_entries += 1
            return []
        emptied: list[UUID] = []
        for site_id in merge.merge_ids:
            if repositories.sites.get(site_id) is None:
                result.stale_entries += 1
                continue
            for audi in repositories.audis.find_many(site_id=site_id):
                repositories.audis.update(audi.id, site_id=merge.keep_id)
                result.audis_moved += 1
            for case in repositories.cases.find_many(site_id=site_id):
                repositories.cases.update(case.id, site_id=merge.keep_id)
                result.cases_moved += 1
            emptied.append(site_id)
        return emptied

    def _merge_audis(
        self,
        repositories: ReconciliationRepositories,
        merge: AudiMerge,
        result: RepairResult,
    ) -> None:
        keep = repositories.audis.get(merge.keep_id)
        if keep is None or keep.site_id != merge.site_id or keep.projector_id != merge.projector_id:
            log.warning("Surviving audi %s changed since planning; skipping merge", merge.keep_id)
            result.stale_entries += 1
            return
        for audi_id in merge.merge_ids:
            audi = repositories.audis.get(audi_id)
            if (
                audi is None
                or audi.site_id != keep.site_id
                or audi.projector_id != keep.projector_id
                or audi.audi_no.strip().upper() != merge.audi_no
            ):
                result.stale_entries += 1
                continue
            for case in repositories.cases.find_many(audi_id=audi_id):
                repositories.cases.update(case.id, audi_id=keep.id, site_id=keep.site_id)
                result.cases_moved += 1
            repositories.audis.delete(audi_id)
            result.audis_deleted += 1
            self._emit(EntityType.AUDI, Outcome.UPDATED, audi_id, f"merged into audi {keep.id}")

    def _emit(self, entity_type: EntityType, outcome: Outcome, entity_id: UUID, reason: str) -> None:
        if self._sink is None:
            return
        self._sink.emit(
            Diagnostic(
                row_index=None,
                entity_type=entity_type,
                outcome=outcome,
                entity_id=entity_id,
                reason=reason,
                error_kind="ReferentialGapError" if outcome is Outcome.ORPHANED else None,
            )
        )
