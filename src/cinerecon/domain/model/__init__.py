"""Public domain model surface."""

from __future__ import annotations

from cinerecon.domain.model.base import Entity, new_id, utcnow
from cinerecon.domain.model.cases import ServiceCase
from cinerecon.domain.model.enums import (
    CaseKeyField,
    CaseKind,
    DtrStatus,
    EntityType,
    Outcome,
    ProjectorStatus,
    RecordKind,
    RmaStatus,
    RmaType,
    Severity,
)
from cinerecon.domain.model.inventory import (
    PLACEHOLDER_AUDI_PREFIX,
    Audi,
    Projector,
    ProjectorModel,
    Site,
)

__all__ = [  # noqa: RUF022
    # base
    "Entity",
    "new_id",
    "utcnow",
    # inventory
    "PLACEHOLDER_AUDI_PREFIX",
    "Audi",
    "Projector",
    "ProjectorModel",
    "Site",
    # cases
    "ServiceCase",
    # enums
    "CaseKeyField",
    "CaseKind",
    "DtrStatus",
    "EntityType",
    "Outcome",
    "ProjectorStatus",
    "RecordKind",
    "RmaStatus",
    "RmaType",
    "Severity",
]
