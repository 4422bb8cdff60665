from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from cinerecon.domain.integrity import IntegrityAuditor
from cinerecon.domain.model import (
    Audi,
    EntityType,
    Outcome,
    RecordKind,
    ServiceCase,
    Site,
)
from cinerecon.domain.reconciliation import Reconciler

if TYPE_CHECKING:
    from collections.abc import Callable

    from cinerecon.adapters.sqlalchemy.unit_of_work import SqlAlchemyReconciliationUnitOfWork

    UowFactory = Callable[[], SqlAlchemyReconciliationUnitOfWork]

AUDI_ROWS = [
    {"site_name": "Suman City Gandhinagar", "audi_no": "1", "serial_number": "S1", "model_no": "CP2220"},
    {"site_name": "Suman City Gandhinagar", "audi_no": "2", "serial_number": "S2", "model_no": "CP2220"},
    {"site_name": "Suman City Ghandhinagar", "audi_no": "3", "serial_number": "S3", "model_no": "CP2220"},
]


def _rma(call_log: str, serial: str) -> dict[str, object]:
    return {"call_log_number": call_log, "serial_number": serial, "rma_raised_date": "2024-01-10"}


def test_batch_against_sqlite_is_suffixed_and_replayable(sqlite_unit_of_work: UowFactory) -> None:
    reconciler = Reconciler(sqlite_unit_of_work)
    reconciler.reconcile_batch(RecordKind.AUDI, AUDI_ROWS)
    rows = [_rma("694531", "S1"), _rma("694531", "S1"), _rma("800001", "000000000")]

    first = reconciler.reconcile_batch(RecordKind.RMA, rows)
    replay = reconciler.reconcile_batch(RecordKind.RMA, rows, index=first.index)

    with sqlite_unit_of_work() as uow:
        cases = uow.session.execute(select(ServiceCase)).scalars().all()
        audi_one = uow.repositories.audis.find_many(audi_no="1")
    by_key = {case.call_log_number: case for case in cases}
    assert sorted(by_key) == ["694531", "694531-1", "800001"]
    assert by_key["694531"].audi_id == by_key["694531-1"].audi_id == audi_one[0].id
    assert by_key["800001"].audi_id is None
    assert first.count(EntityType.CASE, Outcome.ORPHANED) == 1
    assert replay.count(EntityType.CASE, Outcome.CREATED) == 0


def test_audit_folds_typo_site_in_sqlite(sqlite_unit_of_work: UowFactory) -> None:
    Reconciler(sqlite_unit_of_work).reconcile_batch(RecordKind.AUDI, AUDI_ROWS)
    Reconciler(sqlite_unit_of_work).reconcile_batch(RecordKind.RMA, [_rma("694600", "S3")])
    auditor = IntegrityAuditor(sqlite_unit_of_work)

    result = auditor.apply(auditor.plan())

    with sqlite_unit_of_work() as uow:
        sites = uow.session.execute(select(Site)).scalars().all()
        audis = uow.session.execute(select(Audi)).scalars().all()
        [case] = uow.session.execute(select(ServiceCase)).scalars().all()
    assert [site.name for site in sites] == ["Suman City Gandhinagar"]
    assert {audi.site_id for audi in audis} == {sites[0].id}
    assert case.site_id == sites[0].id
    assert result.sites_deleted == 1
    assert result.cases_moved == 1
