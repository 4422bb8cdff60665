"""In-memory canonical store fake with transactional units of work."""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from itertools import count
from typing import TYPE_CHECKING, Any, Final, Literal

from cinerecon.domain.errors import DuplicateKeyError
from cinerecon.domain.model import (
    Audi,
    CaseKind,
    Entity,
    EntityType,
    Projector,
    ProjectorModel,
    ServiceCase,
    Site,
)
from cinerecon.domain.ports import ReconciliationRepositories
from cinerecon.domain.reconciliation.disambiguate import key_suffix

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType
    from uuid import UUID

    from cinerecon.domain.model import CaseKeyField

# (entity type) -> tuples of attribute names that must be unique together
_UNIQUE: Final[dict[EntityType, tuple[tuple[str, ...], ...]]] = {
    EntityType.PROJECTOR_MODEL: (("model_no",),),
    EntityType.PROJECTOR: (("serial_number",),),
    EntityType.CASE: (("kind", "case_number"), ("kind", "call_log_number"), ("kind", "rma_number")),
}

_BASE_TIME: Final[datetime] = datetime(2024, 1, 1, tzinfo=UTC)


class InMemoryStore:
    """Committed state shared by every unit of work; safe across threads.

    ``fail_next`` queues errors raised by the next matching repository call,
    ``before_next`` queues callbacks run right before one (to simulate a
    concurrent writer).
    """

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.committed: dict[EntityType, dict[UUID, Entity]] = {
            entity_type: {} for entity_type in EntityType
        }
        self.commits = 0
        self._clock = count()
        self._failures: dict[tuple[EntityType, str], list[Exception]] = defaultdict(list)
        self._callbacks: dict[tuple[EntityType, str], list[Callable[[], None]]] = defaultdict(list)

    # Test setup ------------------------------------------------------------

    def seed[TEntity: Entity](self, entity: TEntity) -> TEntity:
        with self.lock:
            self.committed[entity.entity_type][entity.id] = entity
        return entity

    def site(self, name: str, **fields: Any) -> Site:
        return self.seed(Site(name=name, created_at=self.tick(), **fields))

    def model(self, model_no: str, **fields: Any) -> ProjectorModel:
        return self.seed(ProjectorModel(model_no=model_no, created_at=self.tick(), **fields))

    def projector(self, serial_number: str, model: ProjectorModel, **fields: Any) -> Projector:
        return self.seed(
            Projector(
                serial_number=serial_number,
                projector_model_id=model.id,
                created_at=self.tick(),
                **fields,
            )
        )

    def audi(self, audi_no: str, site: Site, projector: Projector | None = None) -> Audi:
        return self.seed(
            Audi(
                audi_no=audi_no,
                site_id=site.id,
                projector_id=projector.id if projector is not None else None,
                created_at=self.tick(),
            )
        )

    def case(self, kind: CaseKind, serial_number: str, **fields: Any) -> ServiceCase:
        return self.seed(
            ServiceCase(kind=kind, serial_number=serial_number, created_at=self.tick(), **fields)
        )

    def tick(self) -> datetime:
        """Strictly increasing creation timestamps keep age ordering deterministic."""
        return _BASE_TIME + timedelta(seconds=next(self._clock))

    def fail_next(self, entity_type: EntityType, operation: str, error: Exception, *, times: int = 1) -> None:
        with self.lock:
            self._failures[(entity_type, operation)].extend([error] * times)

    def before_next(self, entity_type: EntityType, operation: str, callback: Callable[[], None]) -> None:
        with self.lock:
            self._callbacks[(entity_type, operation)].append(callback)

    # Inspection ------------------------------------------------------------

    def all(self, entity_type: EntityType) -> list[Any]:
        with self.lock:
            return sorted(self.committed[entity_type].values(), key=lambda entity: entity.age_key())

    def get(self, entity_type: EntityType, entity_id: UUID) -> Any:
        with self.lock:
            return self.committed[entity_type].get(entity_id)

    def cases(self) -> list[ServiceCase]:
        return self.all(EntityType.CASE)

    # Units of work ---------------------------------------------------------

    def unit_of_work(self) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(self)

    def _hooks(self, entity_type: EntityType, operation: str) -> None:
        with self.lock:
            callbacks = self._callbacks.pop((entity_type, operation), [])
            failures = self._failures.get((entity_type, operation))
            error = failures.pop(0) if failures else None
        for callback in callbacks:
            callback()
        if error is not None:
            raise error


_DELETED: Final[object] = object()


class InMemoryUnitOfWork:
    """Stages writes over the committed state; ``commit`` publishes them atomically."""

    def __init__(self, store: InMemoryStore) -> None:
        self.store = store
        self._staged: dict[EntityType, dict[UUID, Any]] = {}
        self._repositories: ReconciliationRepositories | None = None

    def __enter__(self) -> InMemoryUnitOfWork:
        self._staged = {entity_type: {} for entity_type in EntityType}
        self._repositories = ReconciliationRepositories(
            sites=InMemorySiteRepository(self, Site),
            projector_models=InMemoryRepository(self, ProjectorModel),
            projectors=InMemoryRepository(self, Projector),
            audis=InMemoryRepository(self, Audi),
            cases=InMemoryCaseRepository(self, ServiceCase),
        )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        self.rollback()
        self._repositories = None
        return False

    @property
    def repositories(self) -> ReconciliationRepositories:
        if self._repositories is None:
            raise RuntimeError("Unit of work not entered")
        return self._repositories

    def commit(self) -> None:
        with self.store.lock:
            for entity_type, staged in self._staged.items():
                for entity in staged.values():
                    if entity is not _DELETED:
                        self._check_unique(entity_type, entity, committed_only=True)
            for entity_type, staged in self._staged.items():
                table = self.store.committed[entity_type]
                for entity_id, entity in staged.items():
                    if entity is _DELETED:
                        table.pop(entity_id, None)
                    else:
                        table[entity_id] = entity
            self.store.commits += 1
        self._staged = {entity_type: {} for entity_type in EntityType}

    def rollback(self) -> None:
        self._staged = {entity_type: {} for entity_type in EntityType}

    # Visible state ---------------------------------------------------------

    def visible(self, entity_type: EntityType) -> list[Any]:
        with self.store.lock:
            merged: dict[UUID, Any] = dict(self.store.committed[entity_type])
        for entity_id, entity in self._staged[entity_type].items():
            if entity is _DELETED:
                merged.pop(entity_id, None)
            else:
                merged[entity_id] = entity
        return sorted(merged.values(), key=lambda entity: entity.age_key())

    def stage(self, entity: Entity) -> None:
        self._check_unique(entity.entity_type, entity, committed_only=False)
        self._staged[entity.entity_type][entity.id] = entity

    def unstage(self, entity_type: EntityType, entity_id: UUID) -> None:
        self._staged[entity_type][entity_id] = _DELETED

    def _check_unique(self, entity_type: EntityType, entity: Entity, *, committed_only: bool) -> None:
        if committed_only:
            with self.store.lock:
                others = [
                    other
                    for other in self.store.committed[entity_type].values()
                    if self._staged[entity_type].get(other.id) is None
                ]
        else:
            others = self.visible(entity_type)
        for columns in _UNIQUE.get(entity_type, ()):
            values = tuple(getattr(entity, column) for column in columns)
            if any(value is None for value in values):
                continue
            for other in others:
                if other.id == entity.id:
                    continue
                if tuple(getattr(other, column) for column in columns) == values:
                    raise DuplicateKeyError(columns[-1], str(values[-1]))


class InMemoryRepository[TEntity: Entity]:
    def __init__(self, uow: InMemoryUnitOfWork, entity_cls: type[TEntity]) -> None:
        self._uow = uow
        self._entity_cls = entity_cls
        self._type = entity_cls.ENTITY_TYPE

    def _hooks(self, operation: str) -> None:
        self._uow.store._hooks(self._type, operation)  # noqa: SLF001

    def get(self, entity_id: UUID) -> TEntity | None:
        self._hooks("get")
        for entity in self._uow.visible(self._type):
            if entity.id == entity_id:
                return entity
        return None

    def find_by_natural_key(self, **keys: Any) -> TEntity | None:
        found = self.find_many(**keys)
        return found[0] if found else None

    def find_many(self, **criteria: Any) -> list[TEntity]:
        self._hooks("find")
        return [
            entity
            for entity in self._uow.visible(self._type)
            if all(getattr(entity, name) == value for name, value in criteria.items())
        ]

    def create(self, entity: TEntity) -> TEntity:
        self._hooks("create")
        self._uow.stage(entity)
        return entity

    def update(self, entity_id: UUID, **fields: Any) -> TEntity:
        self._hooks("update")
        current = self.get(entity_id)
        if current is None:
            raise LookupError(f"{self._type.value} {entity_id} does not exist")
        updated = replace(current, **fields)
        self._uow.stage(updated)
        return updated

    def delete(self, entity_id: UUID) -> None:
        self._hooks("delete")
        self._uow.unstage(self._type, entity_id)


class InMemorySiteRepository(InMemoryRepository[Site]):
    def find_by_name_casefold(self, name: str) -> list[Site]:
        folded = name.strip().casefold()
        return [site for site in self.find_many() if site.name.strip().casefold() == folded]


class InMemoryCaseRepository(InMemoryRepository[ServiceCase]):
    def find_key_family(
        self, kind: CaseKind, key_field: CaseKeyField, base_key: str
    ) -> list[ServiceCase]:
        return [
            case
            for case in self.find_many(kind=kind)
            if (key := case.key(key_field)) is not None and key_suffix(key, base_key) is not None
        ]

    def existing_keys(self, kind: CaseKind, key_field: CaseKeyField, base_key: str) -> set[str]:
        self._hooks("existing_keys")
        return {
            key
            for case in self.find_key_family(kind, key_field, base_key)
            if (key := case.key(key_field)) is not None
        }
