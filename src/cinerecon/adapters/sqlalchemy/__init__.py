"""SQLAlchemy adapter package for the canonical store."""

from __future__ import annotations

from .mappings import (
    CLASS_BY_ENTITY_TYPE,
    TABLE_BY_ENTITY_TYPE,
    mapper_registry,
    start_mappers,
)
from .repositories import (
    SqlAlchemyAudiRepository,
    SqlAlchemyCaseRepository,
    SqlAlchemyEntityRepository,
    SqlAlchemyProjectorModelRepository,
    SqlAlchemyProjectorRepository,
    SqlAlchemySiteRepository,
    translate_store_errors,
)
from .unit_of_work import (
    SqlAlchemyReconciliationUnitOfWork,
    build_engine,
    shutdown,
    startup,
)

__all__ = [
    "CLASS_BY_ENTITY_TYPE",
    "TABLE_BY_ENTITY_TYPE",
    "SqlAlchemyAudiRepository",
    "SqlAlchemyCaseRepository",
    "SqlAlchemyEntityRepository",
    "SqlAlchemyProjectorModelRepository",
    "SqlAlchemyProjectorRepository",
    "SqlAlchemyReconciliationUnitOfWork",
    "SqlAlchemySiteRepository",
    "build_engine",
    "mapper_registry",
    "shutdown",
    "start_mappers",
    "startup",
    "translate_store_errors",
]
