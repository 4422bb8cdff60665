"""SQLAlchemy mapping metadata for the canonical store."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from functools import cache
from typing import Final

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Dialect,
    Enum,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    orm,
)
from sqlalchemy.orm import configure_mappers

from cinerecon.domain.model import (
    Audi,
    CaseKind,
    Entity,
    EntityType,
    Projector,
    ProjectorModel,
    ProjectorStatus,
    ServiceCase,
    Site,
)

UUIDColumnType = Uuid[uuid.UUID]


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Inventory -------------------------------------------------------------------

site_table = Table(
    "site",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("name", String, nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
    Index("ix_site_name", "name"),
)

projector_model_table = Table(
    "projector_model",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("model_no", String, nullable=False),
    Column("manufacturer", String, nullable=True),
    Column("specifications", Text, nullable=True),
    Column("created_at", UTCDateTime(), nullable=False),
    UniqueConstraint("model_no", name="uq_projector_model_model_no"),
)

projector_table = Table(
    "projector",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("serial_number", String, nullable=False),
    Column(
        "projector_model_id",
        UUIDColumnType,
        ForeignKey("projector_model.id"),
        nullable=False,
    ),
    Column("status", Enum(ProjectorStatus, native_enum=False), nullable=False),
    Column("installation_date", Date, nullable=True),
    Column("created_at", UTCDateTime(), nullable=False),
    UniqueConstraint("serial_number", name="uq_projector_serial_number"),
)

audi_table = Table(
    "audi",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("audi_no", String, nullable=False),
    Column("site_id", UUIDColumnType, ForeignKey("site.id"), nullable=False),
    Column("projector_id", UUIDColumnType, ForeignKey("projector.id"), nullable=True),
    Column("created_at", UTCDateTime(), nullable=False),
    Index("ix_audi_site_audi_no", "site_id", "audi_no"),
    Index("ix_audi_projector_id", "projector_id"),
)

# Cases -----------------------------------------------------------------------

service_case_table = Table(
    "service_case",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("kind", Enum(CaseKind, native_enum=False), nullable=False),
    Column("serial_number", String, nullable=False),
    Column("case_number", String, nullable=True),
    Column("call_log_number", String, nullable=True),
    Column("rma_number", String, nullable=True),
    Column("site_id", UUIDColumnType, ForeignKey("site.id"), nullable=True),
    Column("audi_id", UUIDColumnType, ForeignKey("audi.id"), nullable=True),
    Column("status", String, nullable=True),
    Column("case_type", String, nullable=True),
    Column("severity", String, nullable=True),
    Column("opened_on", Date, nullable=True),
    Column("payload", JSON, nullable=False, default=dict),
    Column("created_at", UTCDateTime(), nullable=False),
    UniqueConstraint("kind", "case_number", name="uq_service_case_case_number"),
    UniqueConstraint("kind", "call_log_number", name="uq_service_case_call_log_number"),
    UniqueConstraint("kind", "rma_number", name="uq_service_case_rma_number"),
    Index("ix_service_case_serial_number", "serial_number"),
    Index("ix_service_case_audi_id", "audi_id"),
)

TABLE_BY_ENTITY_TYPE: Final[dict[EntityType, Table]] = {
    EntityType.SITE: site_table,
    EntityType.PROJECTOR_MODEL: projector_model_table,
    EntityType.PROJECTOR: projector_table,
    EntityType.AUDI: audi_table,
    EntityType.CASE: service_case_table,
}

CLASS_BY_ENTITY_TYPE: Final[dict[EntityType, type[Entity]]] = {
    EntityType.SITE: Site,
    EntityType.PROJECTOR_MODEL: ProjectorModel,
    EntityType.PROJECTOR: Projector,
    EntityType.AUDI: Audi,
    EntityType.CASE: ServiceCase,
}


@cache
def start_mappers() -> orm.registry:
    """Map the domain dataclasses onto their tables (idempotent)."""

    for entity_type, entity_cls in CLASS_BY_ENTITY_TYPE.items():
        mapper_registry.map_imperatively(entity_cls, TABLE_BY_ENTITY_TYPE[entity_type])

    configure_mappers()
    return mapper_registry
