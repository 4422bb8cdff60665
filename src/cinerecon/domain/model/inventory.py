"""Inventory master data: sites, projector models, projectors and audis.

An audi (auditorium) belongs to exactly one site and optionally has one
installed projector. References are held as ids; the canonical store owns
referential integrity.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar, Final

from cinerecon.domain.model.base import Entity
from cinerecon.domain.model.enums import EntityType, ProjectorStatus

if TYPE_CHECKING:
    from datetime import date
    from uuid import UUID

PLACEHOLDER_AUDI_PREFIX: Final[str] = "AUTO-"


@dataclass(eq=False, kw_only=True)
class Site(Entity):
    ENTITY_TYPE: ClassVar[EntityType] = EntityType.SITE

    name: str


@dataclass(eq=False, kw_only=True)
class ProjectorModel(Entity):
    ENTITY_TYPE: ClassVar[EntityType] = EntityType.PROJECTOR_MODEL

    model_no: str
    manufacturer: str | None = None
    specifications: str | None = None


@dataclass(eq=False, kw_only=True)
class Projector(Entity):
    ENTITY_TYPE: ClassVar[EntityType] = EntityType.PROJECTOR

    serial_number: str
    projector_model_id: UUID
    status: ProjectorStatus = ProjectorStatus.ACTIVE
    installation_date: date | None = None


@dataclass(eq=False, kw_only=True)
class Audi(Entity):
    ENTITY_TYPE: ClassVar[EntityType] = EntityType.AUDI

    audi_no: str
    site_id: UUID
    projector_id: UUID | None = None

    @property
    def is_placeholder(self) -> bool:
        """Audis numbered ``AUTO-<n>`` were invented by earlier imports."""
        return self.audi_no.upper().startswith(PLACEHOLDER_AUDI_PREFIX)
