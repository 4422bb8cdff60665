"""Application orchestration entry points."""

from __future__ import annotations

import json
from collections.abc import Callable
from contextlib import ExitStack
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Final

from cinerecon.adapters.diagnostics import (
    FanOutDiagnosticsSink,
    JsonLinesDiagnosticsSink,
    LoggingDiagnosticsSink,
)
from cinerecon.adapters.rows import open_row_source
from cinerecon.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyReconciliationUnitOfWork,
    is_started,
    startup,
)
from cinerecon.config import (
    AuditConfig,
    ReconcileConfig,
    get_audit_config,
    get_database_config,
    get_reconcile_config,
)
from cinerecon.domain.integrity import IntegrityAuditor
from cinerecon.domain.model import RecordKind
from cinerecon.domain.ports import ReconciliationUnitOfWork
from cinerecon.domain.reconciliation import (
    BatchSummary,
    DisambiguationIndex,
    Reconciler,
    StoreGuard,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from pathlib import Path
    from uuid import UUID

    from cinerecon.domain.integrity import AuditCheck, RepairPlan, RepairResult
    from cinerecon.domain.ports import DiagnosticsSink

UnitOfWorkFactory = Callable[[], ReconciliationUnitOfWork]

# files are always reconciled in entity dependency order
RECORD_ORDER: Final[tuple[RecordKind, ...]] = (
    RecordKind.SITE,
    RecordKind.PROJECTOR_MODEL,
    RecordKind.PROJECTOR,
    RecordKind.AUDI,
    RecordKind.DTR,
    RecordKind.RMA,
)

log = getLogger(__name__)


@dataclass(slots=True)
class AuditOutcome:
    plan: RepairPlan
    result: RepairResult | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "plan": self.plan.as_dict(),
            "applied": self.result.as_dict() if self.result is not None else None,
        }


def _default_unit_of_work_factory() -> UnitOfWorkFactory:
    if not is_started():
        startup()
    return SqlAlchemyReconciliationUnitOfWork


def reconcile_files(
    files: Mapping[RecordKind, Path],
    *,
    config: ReconcileConfig | None = None,
    report_path: Path | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    guard: StoreGuard | None = None,
    index: DisambiguationIndex | None = None,
) -> BatchSummary:
    """Reconcile spreadsheet exports into the canonical store."""

    if not files:
        raise ValueError("No input files given")
    effective_config = config or get_reconcile_config()
    effective_uow = unit_of_work_factory or _default_unit_of_work_factory()
    lock_timeout = get_database_config().store_timeout_seconds

    summary = BatchSummary(index=index if index is not None else DisambiguationIndex())
    with ExitStack() as stack:
        sinks: list[DiagnosticsSink] = [LoggingDiagnosticsSink()]
        if report_path is not None:
            sinks.append(stack.enter_context(JsonLinesDiagnosticsSink(report_path)))
        reconciler = Reconciler(
            effective_uow,
            sink=FanOutDiagnosticsSink(sinks),
            guard=guard,
            workers=effective_config.workers,
            max_key_attempts=effective_config.max_key_attempts,
            lock_timeout=lock_timeout,
        )
        for kind in RECORD_ORDER:
            path = files.get(kind)
            if path is None:
                continue
            log.info("Reconciling %s rows from %s", kind.value, path)
            batch = reconciler.reconcile_batch(kind, open_row_source(path, kind), index=summary.index)
            summary.merge(batch)

    log.info("Reconciliation summary: %s", json.dumps(summary.as_dict(), sort_keys=True))
    return summary


def _build_auditor(
    *,
    config: AuditConfig | None,
    unit_of_work_factory: UnitOfWorkFactory | None,
    guard: StoreGuard | None,
    sink: DiagnosticsSink | None = None,
) -> IntegrityAuditor:
    effective_config = config or get_audit_config()
    return IntegrityAuditor(
        unit_of_work_factory or _default_unit_of_work_factory(),
        guard=guard,
        sink=sink,
        site_typos=effective_config.site_typos,
        suggestion_threshold=effective_config.suggestion_threshold,
        lock_timeout=get_database_config().store_timeout_seconds,
    )


def audit_store(
    *,
    checks: Iterable[AuditCheck] | None = None,
    apply: bool = False,
    config: AuditConfig | None = None,
    report_path: Path | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    guard: StoreGuard | None = None,
) -> AuditOutcome:
    """Plan integrity repairs and, when ``apply`` is set, execute the merges."""

    auditor = _build_auditor(
        config=config,
        unit_of_work_factory=unit_of_work_factory,
        guard=guard,
        sink=LoggingDiagnosticsSink(),
    )
    outcome = AuditOutcome(plan=auditor.plan(checks))
    if apply:
        outcome.result = auditor.apply(outcome.plan)

    if report_path is not None:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(json.dumps(outcome.as_dict(), indent=2), encoding="utf-8")
        log.info("Wrote audit report to %s", report_path)
    return outcome


def delete_cases(
    case_ids: Iterable[UUID],
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    guard: StoreGuard | None = None,
) -> RepairResult:
    """Delete reviewed cases by id."""

    auditor = _build_auditor(config=None, unit_of_work_factory=unit_of_work_factory, guard=guard)
    return auditor.delete_cases(case_ids)
