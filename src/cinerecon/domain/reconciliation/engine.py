"""Row-by-row reconciliation of source records into the canonical store.

Each row is normalized completely, then walked through its entity stages in
dependency order (site, projector model, projector, audi, case). Every stage
commits in its own unit of work: shared master data created by early stages
survives a failure in a later stage, while the case record itself is written
all-or-nothing.
"""

from __future__ import annotations

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final

from cinerecon.domain.errors import (
    AmbiguousMatchError,
    InvariantViolationError,
    ReferentialGapError,
    StoreTimeoutError,
    ValidationError,
)
from cinerecon.domain.model import (
    Audi,
    EntityType,
    Outcome,
    Projector,
    ProjectorModel,
    ProjectorStatus,
    RecordKind,
    ServiceCase,
    Site,
)
from cinerecon.domain.ports import Diagnostic, UnreadableRow

from .contracts import AmbiguousMatch, NoMatch, UniqueMatch
from .disambiguate import DisambiguationIndex, assign_keys, record_assigned, with_key_retries
from .locks import StoreGuard
from .match import match_audi, match_case, match_projector, match_projector_model, match_site
from .rows import normalize_row

if TYPE_CHECKING:
    from collections.abc import Callable, Hashable, Iterable, Iterator, Sequence
    from uuid import UUID

    from cinerecon.domain.model import CaseKeyField, Entity
    from cinerecon.domain.ports import DiagnosticsSink, ReconciliationUnitOfWork, SourceRow

    from .disambiguate import RowKey
    from .rows import NormalizedRow

log = logging.getLogger(__name__)

type UnitOfWorkFactory = Callable[[], ReconciliationUnitOfWork]

PRIMARY_ENTITY: Final[dict[RecordKind, EntityType]] = {
    RecordKind.SITE: EntityType.SITE,
    RecordKind.PROJECTOR_MODEL: EntityType.PROJECTOR_MODEL,
    RecordKind.PROJECTOR: EntityType.PROJECTOR,
    RecordKind.AUDI: EntityType.AUDI,
    RecordKind.DTR: EntityType.CASE,
    RecordKind.RMA: EntityType.CASE,
}

_FAILED_OUTCOMES: Final[frozenset[Outcome]] = frozenset(
    {Outcome.SKIPPED, Outcome.AMBIGUOUS, Outcome.FAILED}
)
_RESOLVED_OUTCOMES: Final[frozenset[Outcome]] = frozenset(
    {Outcome.CREATED, Outcome.UPDATED, Outcome.MATCHED}
)


@dataclass(frozen=True, slots=True, kw_only=True)
class StageResult:
    entity_type: EntityType
    outcome: Outcome
    entity_id: UUID | None = None
    reason: str | None = None
    error_kind: str | None = None
    field: str | None = None


@dataclass(slots=True)
class RowResult:
    """Everything that happened to one source row."""

    row_index: int
    kind: RecordKind
    stages: list[StageResult] = field(default_factory=list[StageResult])
    # set when the row was aborted (timeout, invariant violation)
    error_kind: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error_kind is None and not any(
            stage.outcome in _FAILED_OUTCOMES for stage in self.stages
        )

    def entity_id(self, entity_type: EntityType) -> UUID | None:
        for stage in reversed(self.stages):
            if stage.entity_type is entity_type and stage.outcome in _RESOLVED_OUTCOMES:
                return stage.entity_id
        return None


@dataclass(slots=True)
class BatchSummary:
    """Counts for one or more reconciled batches, plus the disambiguation index."""

    index: DisambiguationIndex
    rows_total: int = 0
    rows_succeeded: int = 0
    rows_failed: int = 0
    outcomes: Counter[tuple[EntityType, Outcome]] = field(
        default_factory=Counter[tuple[EntityType, Outcome]]
    )
    errors: Counter[str] = field(default_factory=Counter[str])

    def record(self, result: RowResult) -> None:
        self.rows_total += 1
        if result.succeeded:
            self.rows_succeeded += 1
        else:
            self.rows_failed += 1
        for stage in result.stages:
            self.outcomes[(stage.entity_type, stage.outcome)] += 1
            if stage.error_kind is not None:
                self.errors[stage.error_kind] += 1

    def merge(self, other: BatchSummary) -> None:
        self.rows_total += other.rows_total
        self.rows_succeeded += other.rows_succeeded
        self.rows_failed += other.rows_failed
        self.outcomes.update(other.outcomes)
        self.errors.update(other.errors)

    def count(self, entity_type: EntityType, outcome: Outcome) -> int:
        return self.outcomes[(entity_type, outcome)]

    def as_dict(self) -> dict[str, Any]:
        return {
            "rows_total": self.rows_total,
            "rows_succeeded": self.rows_succeeded,
            "rows_failed": self.rows_failed,
            "outcomes": {
                f"{entity_type.value}.{outcome.value}": count
                for (entity_type, outcome), count in sorted(self.outcomes.items())
            },
            "errors": dict(sorted(self.errors.items())),
        }


@dataclass(slots=True)
class _RowState:
    row: NormalizedRow
    result: RowResult
    site: Site | None = None
    model: ProjectorModel | None = None
    projector: Projector | None = None
    audi: Audi | None = None
    audi_gap: str | None = None
    unresolved: set[EntityType] = field(default_factory=set[EntityType])

    @property
    def key(self) -> RowKey:
        return (self.row.kind.value, self.row.row_index)


type _Stage = Callable[[_RowState, DisambiguationIndex], None]


class Reconciler:
    """Lookup-or-create-or-link driver over a canonical store."""

    def __init__(
        self,
        unit_of_work_factory: UnitOfWorkFactory,
        *,
        sink: DiagnosticsSink | None = None,
        guard: StoreGuard | None = None,
        workers: int = 1,
        max_key_attempts: int = 5,
        lock_timeout: float | None = None,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        if max_key_attempts < 1:
            raise ValueError("max_key_attempts must be >= 1")
        self._uow_factory = unit_of_work_factory
        self._sink = sink
        self._guard = guard or StoreGuard()
        self._workers = workers
        self._max_key_attempts = max_key_attempts
        self._lock_timeout = lock_timeout

    # Batch ----------------------------------------------------------------

    def reconcile_batch(
        self,
        kind: RecordKind,
        rows: Iterable[SourceRow],
        *,
        index: DisambiguationIndex | None = None,
    ) -> BatchSummary:
        """Reconcile ``rows`` of one record kind; per-row errors never abort the batch."""

        index = index if index is not None else DisambiguationIndex()
        summary = BatchSummary(index=index)
        with self._guard.access.shared(timeout=self._lock_timeout):
            if self._workers > 1:
                results: Iterable[RowResult] = self._run_concurrently(kind, rows, index)
            else:
                results = (
                    self.reconcile_row(kind, raw, row_index=row_index, index=index)
                    for row_index, raw in enumerate(rows)
                )
            for result in results:
                summary.record(result)

        log.info(
            "Reconciled %d %s rows: %d succeeded, %d failed",
            summary.rows_total,
            kind.value,
            summary.rows_succeeded,
            summary.rows_failed,
        )
        return summary

    def reconcile_row(
        self,
        kind: RecordKind,
        raw: SourceRow,
        *,
        row_index: int,
        index: DisambiguationIndex,
    ) -> RowResult:
        prepared = self._prepare(kind, raw, row_index)
        if isinstance(prepared, RowResult):
            return prepared
        return self._reconcile_prepared(prepared, index)

    def _prepare(self, kind: RecordKind, raw: SourceRow, row_index: int) -> NormalizedRow | RowResult:
        try:
            if isinstance(raw, UnreadableRow):
                raise ValidationError("row", f"{raw.location}: {raw.reason}")
            return normalize_row(kind, raw, row_index=row_index)
        except ValidationError as exc:
            result = RowResult(row_index=row_index, kind=kind)
            self._record(
                result,
                StageResult(
                    entity_type=PRIMARY_ENTITY[kind],
                    outcome=Outcome.SKIPPED,
                    reason=exc.reason,
                    error_kind=exc.kind,
                    field=exc.field,
                ),
            )
            return result

    def _run_concurrently(
        self,
        kind: RecordKind,
        rows: Iterable[SourceRow],
        index: DisambiguationIndex,
    ) -> list[RowResult]:
        results: list[RowResult] = []
        prepared: list[NormalizedRow] = []
        for row_index, raw in enumerate(rows):
            item = self._prepare(kind, raw, row_index)
            if isinstance(item, RowResult):
                results.append(item)
            else:
                prepared.append(item)

        groups = group_rows_by_case_keys(prepared)
        log.debug("Reconciling %d %s rows in %d groups", len(prepared), kind.value, len(groups))
        with ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="reconcile") as pool:
            futures = [pool.submit(self._run_group, group, index) for group in groups]
            for future in futures:
                results.extend(future.result())
        return sorted(results, key=lambda result: result.row_index)

    def _run_group(self, group: Sequence[NormalizedRow], index: DisambiguationIndex) -> list[RowResult]:
        return [self._reconcile_prepared(row, index) for row in group]

    # Row ------------------------------------------------------------------

    def _reconcile_prepared(self, row: NormalizedRow, index: DisambiguationIndex) -> RowResult:
        state = _RowState(row=row, result=RowResult(row_index=row.row_index, kind=row.kind))
        for entity_type, stage in self._stages_for(row.kind):
            try:
                stage(state, index)
            except AmbiguousMatchError as exc:
                state.unresolved.add(exc.entity_type)
                self._record(
                    state.result,
                    StageResult(
                        entity_type=exc.entity_type,
                        outcome=Outcome.AMBIGUOUS,
                        reason=str(exc),
                        error_kind=exc.kind,
                    ),
                )
            except ReferentialGapError as exc:
                state.unresolved.add(exc.entity_type)
                self._record(
                    state.result,
                    StageResult(
                        entity_type=exc.entity_type,
                        outcome=Outcome.ORPHANED,
                        reason=exc.reason,
                        error_kind=exc.kind,
                    ),
                )
            except (StoreTimeoutError, InvariantViolationError) as exc:
                log.error(
                    "Row %d (%s) aborted at %s stage: %s",
                    row.row_index,
                    row.kind.value,
                    entity_type.value,
                    exc,
                )
                state.result.error_kind = exc.kind
                self._record(
                    state.result,
                    StageResult(
                        entity_type=entity_type,
                        outcome=Outcome.FAILED,
                        reason=str(exc),
                        error_kind=exc.kind,
                    ),
                )
                break
        return state.result

    def _stages_for(self, kind: RecordKind) -> list[tuple[EntityType, _Stage]]:
        if kind is RecordKind.SITE:
            return [(EntityType.SITE, self._site_stage)]
        if kind is RecordKind.PROJECTOR_MODEL:
            return [(EntityType.PROJECTOR_MODEL, self._model_stage)]
        if kind is RecordKind.PROJECTOR:
            return [
                (EntityType.PROJECTOR_MODEL, self._model_stage),
                (EntityType.PROJECTOR, self._projector_stage),
            ]
        if kind is RecordKind.AUDI:
            return [
                (EntityType.SITE, self._site_stage),
                (EntityType.PROJECTOR_MODEL, self._model_stage),
                (EntityType.PROJECTOR, self._projector_stage),
                (EntityType.AUDI, self._audi_stage),
            ]
        return [
            (EntityType.SITE, self._site_stage),
            (EntityType.PROJECTOR_MODEL, self._model_stage),
            (EntityType.PROJECTOR, self._projector_stage),
            (EntityType.AUDI, self._installed_audi_stage),
            (EntityType.CASE, self._case_stage),
        ]

    # Stages ---------------------------------------------------------------

    def _site_stage(self, state: _RowState, _index: DisambiguationIndex) -> None:
        name = state.row.site_name
        if name is None:
            return
        with self._transaction(("site", name.casefold())) as uow:
            sites = uow.repositories.sites
            match = match_site(name, [*sites.find_many(name=name), *sites.find_by_name_casefold(name)])
            if isinstance(match, UniqueMatch):
                site, outcome = match.entity, Outcome.MATCHED
            elif isinstance(match, NoMatch):
                site, outcome = sites.create(Site(name=name)), Outcome.CREATED
            else:
                raise _ambiguous(EntityType.SITE, match)
            uow.commit()
        state.site = site
        self._resolved(state, site, outcome)

    def _model_stage(self, state: _RowState, _index: DisambiguationIndex) -> None:
        row = state.row
        if row.model_no is None:
            return
        with self._transaction(("projector_model", row.model_no)) as uow:
            models = uow.repositories.projector_models
            match = match_projector_model(row.model_no, models.find_many(model_no=row.model_no))
            if isinstance(match, UniqueMatch):
                model = match.entity
                changes = _changes(
                    model, manufacturer=row.manufacturer, specifications=row.specifications
                )
                if changes:
                    model, outcome = models.update(model.id, **changes), Outcome.UPDATED
                else:
                    outcome = Outcome.MATCHED
            elif isinstance(match, NoMatch):
                model = models.create(
                    ProjectorModel(
                        model_no=row.model_no,
                        manufacturer=row.manufacturer,
                        specifications=row.specifications,
                    )
                )
                outcome = Outcome.CREATED
            else:
                raise _ambiguous(EntityType.PROJECTOR_MODEL, match)
            uow.commit()
        state.model = model
        self._resolved(state, model, outcome)

    def _projector_stage(self, state: _RowState, _index: DisambiguationIndex) -> None:
        """Create or correct a projector; case rows only ever look it up."""

        row = state.row
        serial = row.serial_number
        if serial is None:
            return
        inventory_row = row.kind in (RecordKind.PROJECTOR, RecordKind.AUDI)
        if inventory_row and self._skip_unresolved(state, EntityType.PROJECTOR, EntityType.PROJECTOR_MODEL):
            return

        with self._transaction(("projector", serial)) as uow:
            projectors = uow.repositories.projectors
            match = match_projector(serial, projectors.find_many(serial_number=serial))
            if isinstance(match, AmbiguousMatch):
                raise _ambiguous(EntityType.PROJECTOR, match)
            if isinstance(match, UniqueMatch):
                projector, outcome = match.entity, Outcome.MATCHED
                if inventory_row:
                    changes = _changes(
                        projector,
                        projector_model_id=state.model.id if state.model is not None else None,
                        status=row.projector_status,
                        installation_date=row.installation_date,
                    )
                    if changes:
                        projector = projectors.update(projector.id, **changes)
                        outcome = Outcome.UPDATED
            elif not inventory_row:
                # case rows never invent inventory; the case stage reports the gap
                return
            elif state.model is None:
                raise ReferentialGapError(
                    EntityType.PROJECTOR,
                    f"projector {serial} is unknown and the row names no model",
                )
            else:
                projector = projectors.create(
                    Projector(
                        serial_number=serial,
                        projector_model_id=state.model.id,
                        status=row.projector_status or ProjectorStatus.ACTIVE,
                        installation_date=row.installation_date,
                    )
                )
                outcome = Outcome.CREATED
            uow.commit()
        state.projector = projector
        self._resolved(state, projector, outcome)

    def _audi_stage(self, state: _RowState, _index: DisambiguationIndex) -> None:
        row = state.row
        if self._skip_unresolved(state, EntityType.AUDI, EntityType.SITE):
            return
        site = state.site
        audi_no = row.audi_no
        if site is None or audi_no is None:
            return
        projector = state.projector
        projector_id = projector.id if projector is not None else None
        lock_keys: list[Hashable] = [("audi", site.id, audi_no)]
        if projector is not None:
            lock_keys.append(("projector", projector.serial_number))

        with self._transaction(*lock_keys) as uow:
            audis = uow.repositories.audis
            pool = audis.find_many(site_id=site.id, audi_no=audi_no)
            if projector_id is not None:
                pool.extend(audis.find_many(projector_id=projector_id))
            match = match_audi(site_id=site.id, audi_no=audi_no, projector_id=projector_id, pool=pool)
            if isinstance(match, UniqueMatch):
                audi = match.entity
                changes = _changes(audi, projector_id=projector_id)
                if audi.is_placeholder:
                    changes.update(_changes(audi, audi_no=audi_no, site_id=site.id))
                if changes:
                    audi, outcome = audis.update(audi.id, **changes), Outcome.UPDATED
                else:
                    outcome = Outcome.MATCHED
            elif isinstance(match, NoMatch):
                audi = audis.create(Audi(audi_no=audi_no, site_id=site.id, projector_id=projector_id))
                outcome = Outcome.CREATED
            else:
                raise _ambiguous(EntityType.AUDI, match)
            detached: list[Audi] = []
            if projector_id is not None:
                # a projector is installed in one audi at a time
                detached = [
                    audis.update(other.id, projector_id=None)
                    for other in audis.find_many(projector_id=projector_id)
                    if other.id != audi.id
                ]
            uow.commit()
        state.audi = audi
        self._resolved(state, audi, outcome)
        for other in detached:
            log.info(
                "Row %d: projector %s moved from audi %s to audi %s",
                row.row_index,
                projector.serial_number if projector is not None else None,
                other.audi_no,
                audi.audi_no,
            )
            self._resolved(state, other, Outcome.UPDATED)

    def _installed_audi_stage(self, state: _RowState, _index: DisambiguationIndex) -> None:
        """Resolve the audi a case belongs to through its projector's serial number."""

        serial = state.row.serial_number
        projector = state.projector
        if projector is None:
            state.audi_gap = f"no projector with serial number {serial}"
            return
        with self._uow_factory() as uow:
            installed = uow.repositories.audis.find_many(projector_id=projector.id)
        if not installed:
            state.audi_gap = f"projector {serial} is not installed in any audi"
            return
        if len(installed) > 1:
            raise AmbiguousMatchError(
                EntityType.AUDI,
                [audi.id for audi in installed],
                reason="projector_installed_in_several_audis",
            )
        state.audi = installed[0]
        self._resolved(state, installed[0], Outcome.MATCHED)

    def _case_stage(self, state: _RowState, index: DisambiguationIndex) -> None:
        row = state.row
        case_fields = row.case
        serial = row.serial_number
        if case_fields is None or serial is None:
            return
        kind = case_fields.kind
        keys = case_fields.keys
        present = keys.present()
        bases = dict(present)
        audi = state.audi
        row_site_id = state.site.id if state.site is not None else None
        lock_keys = [("case", kind, key_field, base_key) for key_field, base_key in present]

        def attempt(_attempt: int) -> tuple[ServiceCase, Outcome, dict[CaseKeyField, str]]:
            with self._transaction(*lock_keys) as uow:
                cases = uow.repositories.cases
                pool = [
                    case
                    for key_field, base_key in present
                    for case in cases.find_key_family(kind, key_field, base_key)
                ]
                match = match_case(
                    keys,
                    serial_number=serial,
                    pool=pool,
                    is_live=lambda case: index.is_live(case.id, state.key),
                )
                if isinstance(match, AmbiguousMatch):
                    raise _ambiguous(EntityType.CASE, match)

                def snapshot(key_field: CaseKeyField, base_key: str) -> set[str]:
                    return cases.existing_keys(kind, key_field, base_key)

                if isinstance(match, UniqueMatch):
                    case = match.entity
                    missing = [(key_field, base) for key_field, base in present if case.key(key_field) is None]
                    assigned = assign_keys(kind, missing, snapshot=snapshot, index=index)
                    wanted: dict[str, Any] = {
                        "status": case_fields.status,
                        "case_type": case_fields.case_type,
                        "severity": case_fields.severity,
                        "opened_on": case_fields.opened_on,
                    }
                    if audi is not None:
                        wanted.update(audi_id=audi.id, site_id=audi.site_id)
                    elif case.site_id is None:
                        wanted["site_id"] = row_site_id
                    changes = _changes(case, **wanted)
                    changes.update({key_field.value: key for key_field, key in assigned.items()})
                    if changes:
                        case, outcome = cases.update(case.id, **changes), Outcome.UPDATED
                    else:
                        outcome = Outcome.MATCHED
                else:
                    assigned = assign_keys(kind, present, snapshot=snapshot, index=index)
                    case = cases.create(
                        ServiceCase(
                            kind=kind,
                            serial_number=serial,
                            site_id=audi.site_id if audi is not None else row_site_id,
                            audi_id=audi.id if audi is not None else None,
                            status=case_fields.status,
                            case_type=case_fields.case_type,
                            severity=case_fields.severity,
                            opened_on=case_fields.opened_on,
                            payload=dict(case_fields.payload),
                            **{key_field.value: key for key_field, key in assigned.items()},
                        )
                    )
                    outcome = Outcome.CREATED
                index.claim(case.id, state.key)
                uow.commit()
            return case, outcome, assigned

        case, outcome, assigned = with_key_retries(
            attempt,
            max_attempts=self._max_key_attempts,
            what=f"{kind.value} row {row.row_index}",
        )
        record_assigned(kind, bases, assigned, index=index)
        if any(key != bases[key_field] for key_field, key in assigned.items()):
            log.info(
                "Row %d (%s): colliding key disambiguated as %s",
                row.row_index,
                kind.value,
                ", ".join(f"{key_field.value}={key}" for key_field, key in assigned.items()),
            )
        self._resolved(state, case, outcome)

        if state.audi_gap is not None:
            self._record(
                state.result,
                StageResult(
                    entity_type=EntityType.CASE,
                    outcome=Outcome.ORPHANED,
                    entity_id=case.id,
                    reason=state.audi_gap,
                    error_kind=ReferentialGapError.__name__,
                ),
            )

    # Helpers --------------------------------------------------------------

    @contextmanager
    def _transaction(self, *lock_keys: Hashable) -> Iterator[ReconciliationUnitOfWork]:
        with (
            self._guard.keys.hold(lock_keys, timeout=self._lock_timeout),
            self._uow_factory() as uow,
        ):
            yield uow

    def _skip_unresolved(self, state: _RowState, entity_type: EntityType, dependency: EntityType) -> bool:
        if dependency not in state.unresolved:
            return False
        state.unresolved.add(entity_type)
        self._record(
            state.result,
            StageResult(
                entity_type=entity_type,
                outcome=Outcome.SKIPPED,
                reason=f"{dependency.value} unresolved",
            ),
        )
        return True

    def _resolved(self, state: _RowState, entity: Entity, outcome: Outcome) -> None:
        self._record(
            state.result,
            StageResult(entity_type=entity.entity_type, outcome=outcome, entity_id=entity.id),
        )

    def _record(self, result: RowResult, stage: StageResult) -> None:
        result.stages.append(stage)
        if self._sink is not None:
            self._sink.emit(
                Diagnostic(
                    row_index=result.row_index,
                    entity_type=stage.entity_type,
                    outcome=stage.outcome,
                    reason=stage.reason,
                    entity_id=stage.entity_id,
                    error_kind=stage.error_kind,
                    field=stage.field,
                )
            )


def group_rows_by_case_keys(rows: Sequence[NormalizedRow]) -> list[list[NormalizedRow]]:
    """Partition rows so that rows sharing any case key land in one group.

    Groups keep source order internally and are ordered by their first row.
    """

    parent = list(range(len(rows)))

    def find(position: int) -> int:
        while parent[position] != position:
            parent[position] = parent[parent[position]]
            position = parent[position]
        return position

    owners: dict[tuple[object, ...], int] = {}
    for position, row in enumerate(rows):
        for key in row.case_keys:
            owner = owners.setdefault(key, position)
            if owner != position:
                root, other = find(position), find(owner)
                parent[max(root, other)] = min(root, other)

    groups: dict[int, list[NormalizedRow]] = {}
    for position, row in enumerate(rows):
        groups.setdefault(find(position), []).append(row)
    return list(groups.values())


def _changes(entity: Entity, **wanted: Any) -> dict[str, Any]:
    """Fields whose wanted value is known and differs; never clears a value."""
    return {
        name: value
        for name, value in wanted.items()
        if value is not None and getattr(entity, name) != value
    }


def _ambiguous[TEntity: Entity](
    entity_type: EntityType, match: AmbiguousMatch[TEntity]
) -> AmbiguousMatchError:
    return AmbiguousMatchError(
        entity_type,
        [candidate.id for candidate in match.candidates],
        reason=f"{match.rule}: {match.reason}",
    )
