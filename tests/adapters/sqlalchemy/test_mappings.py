from __future__ import annotations

from datetime import UTC, date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import create_engine, inspect, text

from cinerecon.adapters.sqlalchemy import start_mappers
from cinerecon.adapters.sqlalchemy.mappings import mapper_registry
from cinerecon.adapters.sqlalchemy.migrations import upgrade_head
from cinerecon.domain.model import (
    CaseKind,
    Projector,
    ProjectorModel,
    ProjectorStatus,
    ServiceCase,
    Site,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine
    from sqlalchemy.orm import Session


def test_migration_creates_every_mapped_table() -> None:
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    start_mappers()

    upgrade_head(engine=engine)

    inspector = inspect(engine)
    assert set(mapper_registry.metadata.tables) <= set(inspector.get_table_names())
    unique_names = {
        constraint["name"] for constraint in inspector.get_unique_constraints("service_case")
    }
    assert unique_names == {
        "uq_service_case_case_number",
        "uq_service_case_call_log_number",
        "uq_service_case_rma_number",
    }
    with engine.connect() as connection:
        version = connection.execute(text("select version_num from alembic_version")).scalar_one()
    assert version == "0001_initial_schema"
    engine.dispose()


def test_upgrade_is_repeatable(sqlite_engine: Engine) -> None:
    upgrade_head(engine=sqlite_engine)

    assert "service_case" in inspect(sqlite_engine).get_table_names()


def test_enums_are_stored_by_name(sqlite_session: Session) -> None:
    model = ProjectorModel(model_no="CP2220")
    sqlite_session.add(model)
    sqlite_session.add(
        Projector(
            serial_number="411034563",
            projector_model_id=model.id,
            status=ProjectorStatus.MAINTENANCE,
            installation_date=date(2019, 6, 1),
        )
    )
    sqlite_session.add(ServiceCase(kind=CaseKind.RMA, serial_number="411034563", call_log_number="1"))
    sqlite_session.commit()

    status = sqlite_session.execute(text("select status from projector")).scalar_one()
    kind = sqlite_session.execute(text("select kind from service_case")).scalar_one()
    assert status == "MAINTENANCE"
    assert kind == "RMA"


def test_timestamps_round_trip_as_utc(sqlite_session: Session) -> None:
    naive = datetime(2024, 3, 1, 12, 30)  # noqa: DTZ001
    site = Site(name="Suman City", created_at=naive)
    sqlite_session.add(site)
    sqlite_session.commit()
    sqlite_session.expire_all()

    stored = sqlite_session.get(Site, site.id)

    assert stored is not None
    assert stored.created_at == datetime(2024, 3, 1, 12, 30, tzinfo=UTC)


def test_case_payload_round_trips(sqlite_session: Session) -> None:
    case = ServiceCase(
        kind=CaseKind.DTR,
        serial_number="S1",
        case_number="C1",
        payload={"problem_name": "No light output", "remarks": "lamp swapped"},
    )
    sqlite_session.add(case)
    sqlite_session.commit()
    sqlite_session.expire_all()

    stored = sqlite_session.get(ServiceCase, case.id)

    assert stored is not None
    assert stored.payload == {"problem_name": "No light output", "remarks": "lamp swapped"}
