from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest

from cinerecon.adapters.diagnostics import CollectingDiagnosticsSink
from cinerecon.domain.errors import DuplicateKeyError, StoreTimeoutError
from cinerecon.domain.model import (
    Audi,
    CaseKind,
    EntityType,
    Outcome,
    Projector,
    ProjectorStatus,
    RecordKind,
    ServiceCase,
    Site,
)
from cinerecon.domain.ports import UnreadableRow
from cinerecon.domain.reconciliation import (
    DisambiguationIndex,
    Reconciler,
    group_rows_by_case_keys,
    normalize_row,
)
from tests.helpers.store import InMemoryStore

SERIAL = "411034563"


@dataclass(slots=True)
class Installed:
    site: Site
    projector: Projector
    audi: Audi


@pytest.fixture
def installed(store: InMemoryStore) -> Installed:
    model = store.model("CP2220")
    projector = store.projector(SERIAL, model)
    site = store.site("Suman City Gandhinagar")
    audi = store.audi("AUDI-1", site, projector)
    return Installed(site=site, projector=projector, audi=audi)


def _rma(call_log: str | None, serial: str = SERIAL, **extra: Any) -> dict[str, Any]:
    return {
        "call_log_number": call_log,
        "serial_number": serial,
        "rma_raised_date": "2024-01-10",
        **extra,
    }


def _dtr(case_number: str, serial: str = SERIAL, **extra: Any) -> dict[str, Any]:
    return {"case_number": case_number, "serial_number": serial, "error_date": 45000, **extra}


def _by_key(store: InMemoryStore) -> dict[str | None, ServiceCase]:
    return {case.call_log_number or case.case_number: case for case in store.cases()}


def test_colliding_call_log_numbers_are_suffixed_and_share_the_audi(
    store: InMemoryStore, installed: Installed
) -> None:
    reconciler = Reconciler(store.unit_of_work)

    summary = reconciler.reconcile_batch(RecordKind.RMA, [_rma("694531"), _rma("694531")])

    cases = _by_key(store)
    assert sorted(cases) == ["694531", "694531-1"]
    assert {case.audi_id for case in cases.values()} == {installed.audi.id}
    assert {case.site_id for case in cases.values()} == {installed.site.id}
    assert summary.rows_succeeded == 2
    assert summary.count(EntityType.CASE, Outcome.CREATED) == 2


def test_replaying_a_batch_creates_no_new_cases(store: InMemoryStore, installed: Installed) -> None:
    _ = installed
    rows = [_rma("694531"), _rma("694531"), _rma("700001")]
    reconciler = Reconciler(store.unit_of_work)

    first = reconciler.reconcile_batch(RecordKind.RMA, rows)
    before = {case.id: case.call_log_number for case in store.cases()}
    replay = reconciler.reconcile_batch(RecordKind.RMA, rows, index=first.index)

    assert {case.id: case.call_log_number for case in store.cases()} == before
    assert replay.count(EntityType.CASE, Outcome.CREATED) == 0
    assert replay.count(EntityType.CASE, Outcome.MATCHED) == 3


def test_replaying_with_a_fresh_index_is_idempotent_too(
    store: InMemoryStore, installed: Installed
) -> None:
    _ = installed
    rows = [_rma("694531"), _rma("694531")]
    reconciler = Reconciler(store.unit_of_work)
    reconciler.reconcile_batch(RecordKind.RMA, rows)

    replay = reconciler.reconcile_batch(RecordKind.RMA, rows, index=DisambiguationIndex())

    assert len(store.cases()) == 2
    assert replay.count(EntityType.CASE, Outcome.MATCHED) == 2


def test_reversed_order_swaps_suffixes() -> None:
    rows = [_dtr("C1", call_status="observation"), _dtr("C1", call_status="closed")]

    forward = InMemoryStore()
    Reconciler(forward.unit_of_work).reconcile_batch(RecordKind.DTR, rows)
    reverse = InMemoryStore()
    Reconciler(reverse.unit_of_work).reconcile_batch(RecordKind.DTR, list(reversed(rows)))

    assert {key: case.status for key, case in _by_key(forward).items()} == {
        "C1": "open",
        "C1-1": "closed",
    }
    assert {key: case.status for key, case in _by_key(reverse).items()} == {
        "C1": "closed",
        "C1-1": "open",
    }


def test_unknown_serial_creates_an_orphaned_case(store: InMemoryStore) -> None:
    sink = CollectingDiagnosticsSink()
    reconciler = Reconciler(store.unit_of_work, sink=sink)

    summary = reconciler.reconcile_batch(RecordKind.RMA, [_rma("800001", serial="000000000")])

    [case] = store.cases()
    assert case.audi_id is None
    assert store.all(EntityType.PROJECTOR) == []
    [orphaned] = sink.by_outcome(Outcome.ORPHANED)
    assert orphaned.entity_type is EntityType.CASE
    assert orphaned.entity_id == case.id
    assert orphaned.error_kind == "ReferentialGapError"
    assert orphaned.reason == "no projector with serial number 000000000"
    assert summary.errors["ReferentialGapError"] == 1
    assert summary.rows_succeeded == 1


def test_projector_without_audi_leaves_case_unlinked(store: InMemoryStore) -> None:
    store.projector("S-LOOSE", store.model("CP2220"))
    sink = CollectingDiagnosticsSink()

    Reconciler(store.unit_of_work, sink=sink).reconcile_batch(
        RecordKind.DTR, [_dtr("C9", serial="S-LOOSE")]
    )

    [case] = store.cases()
    assert case.audi_id is None
    [orphaned] = sink.by_outcome(Outcome.ORPHANED)
    assert orphaned.reason == "projector S-LOOSE is not installed in any audi"


def test_existing_case_is_linked_once_its_audi_is_known(
    store: InMemoryStore, installed: Installed
) -> None:
    existing = store.case(CaseKind.DTR, SERIAL, case_number="C1")

    summary = Reconciler(store.unit_of_work).reconcile_batch(RecordKind.DTR, [_dtr("C1")])

    case = store.get(EntityType.CASE, existing.id)
    assert case.audi_id == installed.audi.id
    assert case.site_id == installed.site.id
    assert summary.count(EntityType.CASE, Outcome.UPDATED) == 1
    assert len(store.cases()) == 1


def test_ambiguous_case_match_overwrites_nothing(store: InMemoryStore) -> None:
    first = store.case(CaseKind.DTR, "S1", case_number="C1")
    second = store.case(CaseKind.DTR, "S1", case_number="C1")

    summary = Reconciler(store.unit_of_work).reconcile_batch(
        RecordKind.DTR, [_dtr("C1", serial="S1", call_status="closed")]
    )

    assert store.get(EntityType.CASE, first.id) is first
    assert store.get(EntityType.CASE, second.id) is second
    assert first.status is None
    assert second.status is None
    assert len(store.cases()) == 2
    assert summary.count(EntityType.CASE, Outcome.AMBIGUOUS) == 1
    assert summary.rows_failed == 1


def test_secondary_key_with_disagreeing_primary_is_ambiguous(store: InMemoryStore) -> None:
    holder = store.case(CaseKind.RMA, SERIAL, call_log_number="700000", rma_number="R-1")

    summary = Reconciler(store.unit_of_work).reconcile_batch(
        RecordKind.RMA, [_rma("694531", rma_number="R-1")]
    )

    assert store.cases() == [holder]
    assert holder.call_log_number == "700000"
    assert summary.count(EntityType.CASE, Outcome.AMBIGUOUS) == 1


def test_secondary_key_match_fills_in_missing_primary(store: InMemoryStore) -> None:
    holder = store.case(CaseKind.RMA, SERIAL, rma_number="R-1")

    Reconciler(store.unit_of_work).reconcile_batch(RecordKind.RMA, [_rma("694531", rma_number="R-1")])

    [case] = store.cases()
    assert case.id == holder.id
    assert case.call_log_number == "694531"
    assert case.rma_number == "R-1"


def test_invalid_row_is_skipped_and_the_batch_continues(store: InMemoryStore) -> None:
    sink = CollectingDiagnosticsSink()

    summary = Reconciler(store.unit_of_work, sink=sink).reconcile_batch(
        RecordKind.DTR,
        [_dtr("C1", error_date="2024-02-30"), _dtr("C2")],
    )

    assert [case.case_number for case in store.cases()] == ["C2"]
    [skipped] = sink.by_outcome(Outcome.SKIPPED)
    assert skipped.row_index == 0
    assert skipped.entity_type is EntityType.CASE
    assert skipped.field == "error_date"
    assert skipped.error_kind == "ValidationError"
    assert summary.rows_total == 2
    assert summary.rows_failed == 1
    assert summary.errors["ValidationError"] == 1


@pytest.mark.parametrize("workers", [1, 2])
def test_unreadable_source_row_is_skipped_in_place(store: InMemoryStore, workers: int) -> None:
    sink = CollectingDiagnosticsSink()
    rows = [
        {"site_name": "Suman City"},
        UnreadableRow(location="sites.jsonl:2", reason="invalid JSON"),
        {"site_name": "INOX Surat"},
    ]

    summary = Reconciler(store.unit_of_work, sink=sink, workers=workers).reconcile_batch(
        RecordKind.SITE, rows
    )

    assert sorted(site.name for site in store.all(EntityType.SITE)) == ["INOX Surat", "Suman City"]
    [skipped] = sink.by_outcome(Outcome.SKIPPED)
    assert skipped.row_index == 1
    assert skipped.field == "row"
    assert skipped.reason == "sites.jsonl:2: invalid JSON"
    assert summary.rows_total == 3
    assert summary.rows_failed == 1
    assert summary.errors["ValidationError"] == 1


def test_store_timeout_aborts_only_that_row(store: InMemoryStore) -> None:
    store.fail_next(EntityType.CASE, "create", StoreTimeoutError("create service_case"))

    summary = Reconciler(store.unit_of_work).reconcile_batch(
        RecordKind.DTR, [_dtr("C1"), _dtr("C2")]
    )

    assert [case.case_number for case in store.cases()] == ["C2"]
    assert summary.count(EntityType.CASE, Outcome.FAILED) == 1
    assert summary.errors["StoreTimeoutError"] == 1
    assert summary.rows_failed == 1
    assert summary.rows_succeeded == 1


def test_key_taken_between_snapshot_and_write_is_retried(store: InMemoryStore) -> None:
    def concurrent_writer() -> None:
        store.case(CaseKind.RMA, "OTHER-SERIAL", call_log_number="694531")

    store.before_next(EntityType.CASE, "create", concurrent_writer)

    Reconciler(store.unit_of_work).reconcile_batch(RecordKind.RMA, [_rma("694531")])

    mine = [case for case in store.cases() if case.serial_number == SERIAL]
    assert [case.call_log_number for case in mine] == ["694531-1"]


def test_persistent_key_race_fails_loudly(store: InMemoryStore) -> None:
    store.fail_next(
        EntityType.CASE, "create", DuplicateKeyError("call_log_number", "694531"), times=3
    )

    summary = Reconciler(store.unit_of_work, max_key_attempts=3).reconcile_batch(
        RecordKind.RMA, [_rma("694531")]
    )

    assert store.cases() == []
    assert summary.errors["InvariantViolationError"] == 1
    assert summary.count(EntityType.CASE, Outcome.FAILED) == 1


def test_audi_row_builds_inventory_in_dependency_order(store: InMemoryStore) -> None:
    summary = Reconciler(store.unit_of_work).reconcile_batch(
        RecordKind.AUDI,
        [
            {
                "site_name": "Suman City",
                "audi_no": "Audi 1",
                "model_no": "CP2220",
                "serial_number": SERIAL,
                "status": "working",
            }
        ],
    )

    [site] = store.all(EntityType.SITE)
    [projector] = store.all(EntityType.PROJECTOR)
    [audi] = store.all(EntityType.AUDI)
    assert audi.site_id == site.id
    assert audi.projector_id == projector.id
    assert audi.audi_no == "AUDI 1"
    assert summary.rows_succeeded == 1
    assert summary.count(EntityType.AUDI, Outcome.CREATED) == 1


def test_audi_row_with_unknown_projector_and_no_model(store: InMemoryStore) -> None:
    sink = CollectingDiagnosticsSink()

    Reconciler(store.unit_of_work, sink=sink).reconcile_batch(
        RecordKind.AUDI,
        [{"site_name": "Suman City", "audi_no": "1", "serial_number": "UNKNOWN"}],
    )

    [orphaned] = sink.by_outcome(Outcome.ORPHANED)
    assert orphaned.entity_type is EntityType.PROJECTOR
    [audi] = store.all(EntityType.AUDI)
    assert audi.projector_id is None


def test_projector_row_corrects_model_and_status_in_place(store: InMemoryStore) -> None:
    projector = store.projector(SERIAL, store.model("CP2220"))

    summary = Reconciler(store.unit_of_work).reconcile_batch(
        RecordKind.PROJECTOR,
        [{"serial_number": SERIAL, "model_no": "CP4230", "status": "under maintenance"}],
    )

    updated = store.get(EntityType.PROJECTOR, projector.id)
    [_, new_model] = store.all(EntityType.PROJECTOR_MODEL)
    assert updated.projector_model_id == new_model.id
    assert updated.status is ProjectorStatus.MAINTENANCE
    assert summary.count(EntityType.PROJECTOR, Outcome.UPDATED) == 1


def test_audi_row_moves_projector_link_to_the_named_audi(
    store: InMemoryStore, installed: Installed
) -> None:
    replacement = store.projector("NEW-SERIAL", store.model("CP4230"))

    Reconciler(store.unit_of_work).reconcile_batch(
        RecordKind.AUDI,
        [{"site_name": installed.site.name, "audi_no": "AUDI-1", "serial_number": "NEW-SERIAL"}],
    )

    audi = store.get(EntityType.AUDI, installed.audi.id)
    assert audi.projector_id == replacement.id
    assert len(store.all(EntityType.AUDI)) == 1


def test_projector_moved_to_a_new_audi_leaves_the_old_audi_empty(
    store: InMemoryStore, installed: Installed
) -> None:
    reconciler = Reconciler(store.unit_of_work)

    summary = reconciler.reconcile_batch(
        RecordKind.AUDI,
        [{"site_name": installed.site.name, "audi_no": "AUDI-2", "serial_number": SERIAL}],
    )
    cases = reconciler.reconcile_batch(RecordKind.DTR, [_dtr("DTR-1")])

    audis = {audi.audi_no: audi for audi in store.all(EntityType.AUDI)}
    assert audis["AUDI-1"].projector_id is None
    assert audis["AUDI-2"].projector_id == installed.projector.id
    assert summary.count(EntityType.AUDI, Outcome.CREATED) == 1
    assert summary.count(EntityType.AUDI, Outcome.UPDATED) == 1
    assert cases.rows_succeeded == 1
    assert [case.audi_id for case in store.cases()] == [audis["AUDI-2"].id]


def test_placeholder_audi_is_renumbered(store: InMemoryStore) -> None:
    projector = store.projector(SERIAL, store.model("CP2220"))
    old_site = store.site("Unknown")
    placeholder = store.audi("AUTO-7", old_site, projector)

    Reconciler(store.unit_of_work).reconcile_batch(
        RecordKind.AUDI,
        [{"site_name": "Suman City", "audi_no": "2", "serial_number": SERIAL}],
    )

    audi = store.get(EntityType.AUDI, placeholder.id)
    new_site = next(site for site in store.all(EntityType.SITE) if site.name == "Suman City")
    assert audi.audi_no == "2"
    assert audi.site_id == new_site.id
    assert len(store.all(EntityType.AUDI)) == 1


def test_ambiguous_site_skips_dependent_audi(store: InMemoryStore) -> None:
    store.site("suman city")
    store.site("SUMAN CITY")

    summary = Reconciler(store.unit_of_work).reconcile_batch(
        RecordKind.AUDI, [{"site_name": "Suman City", "audi_no": "1"}]
    )

    assert store.all(EntityType.AUDI) == []
    assert summary.count(EntityType.SITE, Outcome.AMBIGUOUS) == 1
    assert summary.count(EntityType.AUDI, Outcome.SKIPPED) == 1
    assert summary.rows_failed == 1


def test_case_rows_never_create_inventory(store: InMemoryStore) -> None:
    Reconciler(store.unit_of_work).reconcile_batch(
        RecordKind.DTR, [_dtr("C1", serial="S-NEW", model_no="CP2220", site_name="Suman City")]
    )

    assert store.all(EntityType.PROJECTOR) == []
    assert store.all(EntityType.AUDI) == []
    [case] = store.cases()
    [site] = store.all(EntityType.SITE)
    assert case.site_id == site.id


def test_rows_sharing_case_keys_are_grouped() -> None:
    rows = [
        normalize_row(RecordKind.RMA, _rma("A", rma_number="B"), row_index=0),
        normalize_row(RecordKind.RMA, _rma("C"), row_index=1),
        normalize_row(RecordKind.RMA, _rma("D", rma_number="B"), row_index=2),
        normalize_row(RecordKind.RMA, _rma("D"), row_index=3),
        normalize_row(RecordKind.RMA, _rma("E"), row_index=4),
    ]

    groups = group_rows_by_case_keys(rows)

    assert [[row.row_index for row in group] for group in groups] == [[0, 2, 3], [1], [4]]


def test_concurrent_workers_match_sequential_results() -> None:
    rows = [_rma(f"{700000 + position % 4}", serial=f"S{position % 3}") for position in range(24)]

    sequential = InMemoryStore()
    Reconciler(sequential.unit_of_work).reconcile_batch(RecordKind.RMA, rows)
    concurrent = InMemoryStore()
    summary = Reconciler(concurrent.unit_of_work, workers=4).reconcile_batch(RecordKind.RMA, rows)

    def keys(store: InMemoryStore) -> list[tuple[str | None, str]]:
        return sorted((case.call_log_number, case.serial_number) for case in store.cases())

    assert keys(concurrent) == keys(sequential)
    assert len({case.call_log_number for case in concurrent.cases()}) == 24
    assert summary.rows_succeeded == 24


def test_invalid_worker_count_is_rejected(store: InMemoryStore) -> None:
    with pytest.raises(ValueError, match="workers"):
        Reconciler(store.unit_of_work, workers=0)
