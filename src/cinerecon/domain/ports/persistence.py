"""Ports for the canonical store.

Every repository offers the same five operations per entity type. Implementations
must give read-your-writes consistency inside one unit of work, raise
``DuplicateKeyError`` when a unique natural key is taken at write time and
``StoreTimeoutError`` when an operation exceeds its bound.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from cinerecon.domain.model import (
    Audi,
    Entity,
    Projector,
    ProjectorModel,
    ServiceCase,
    Site,
)

if TYPE_CHECKING:
    from uuid import UUID

    from cinerecon.domain.model import CaseKeyField, CaseKind


@runtime_checkable
class CanonicalRepository[TEntity: Entity](Protocol):
    """Minimal create/read/update/delete contract for one entity type."""

    def get(self, entity_id: UUID) -> TEntity | None: ...

    def find_by_natural_key(self, **keys: Any) -> TEntity | None: ...

    def find_many(self, **criteria: Any) -> list[TEntity]:
        """Return entities whose attributes equal ``criteria`` (``None`` matches NULL),
        oldest first."""
        ...

    def create(self, entity: TEntity) -> TEntity: ...

    def update(self, entity_id: UUID, **fields: Any) -> TEntity: ...

    def delete(self, entity_id: UUID) -> None: ...


@runtime_checkable
class SiteRepository(CanonicalRepository[Site], Protocol):
    """Repository contract for sites."""

    def find_by_name_casefold(self, name: str) -> list[Site]: ...


@runtime_checkable
class ProjectorModelRepository(CanonicalRepository[ProjectorModel], Protocol):
    """Repository contract for projector models."""


@runtime_checkable
class ProjectorRepository(CanonicalRepository[Projector], Protocol):
    """Repository contract for projectors."""


@runtime_checkable
class AudiRepository(CanonicalRepository[Audi], Protocol):
    """Repository contract for audis."""


@runtime_checkable
class CaseRepository(CanonicalRepository[ServiceCase], Protocol):
    """Repository contract for service cases."""

    def find_key_family(
        self, kind: CaseKind, key_field: CaseKeyField, base_key: str
    ) -> list[ServiceCase]:
        """Return cases whose ``key_field`` is ``base_key`` or ``base_key-<n>``."""
        ...

    def existing_keys(self, kind: CaseKind, key_field: CaseKeyField, base_key: str) -> set[str]:
        """Snapshot of taken ``key_field`` values in the family of ``base_key``."""
        ...
