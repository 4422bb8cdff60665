"""Repository implementations backed by SQLAlchemy sessions.

Every write flushes immediately so constraint violations surface inside the
call that caused them and later reads in the same session see the change.
Driver errors are translated into the domain's store errors.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from cinerecon.adapters.sqlalchemy.mappings import (
    TABLE_BY_ENTITY_TYPE,
    service_case_table,
    site_table,
)
from cinerecon.domain.errors import DuplicateKeyError, StoreTimeoutError
from cinerecon.domain.model import (
    Audi,
    Entity,
    Projector,
    ProjectorModel,
    ServiceCase,
    Site,
)
from cinerecon.domain.reconciliation.disambiguate import key_suffix

if TYPE_CHECKING:
    from collections.abc import Iterator
    from uuid import UUID

    from sqlalchemy.orm import Session

    from cinerecon.domain.model import CaseKeyField, CaseKind

_TIMEOUT_MARKERS = (
    "database is locked",
    "timeout",
    "timed out",
    "lock wait",
    "statement timeout",
    "canceling statement",
)
_UNIQUE_MARKERS = ("unique", "duplicate key")


@contextmanager
def translate_store_errors(operation: str) -> Iterator[None]:
    """Map SQLAlchemy driver errors onto ``DuplicateKeyError``/``StoreTimeoutError``."""

    try:
        yield
    except IntegrityError as exc:
        message = str(exc.orig).lower()
        if any(marker in message for marker in _UNIQUE_MARKERS):
            raise DuplicateKeyError(operation, str(exc.orig)) from exc
        raise
    except OperationalError as exc:
        message = str(exc.orig).lower()
        if any(marker in message for marker in _TIMEOUT_MARKERS):
            raise StoreTimeoutError(operation) from exc
        raise
    except PoolTimeoutError as exc:
        raise StoreTimeoutError(operation) from exc


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SqlAlchemyEntityRepository[TEntity: Entity]:
    """Shared create/read/update/delete for one mapped entity type."""

    def __init__(self, session: Session, entity_cls: type[TEntity]) -> None:
        self.session = session
        self._entity_cls = entity_cls
        self._table = TABLE_BY_ENTITY_TYPE[entity_cls.ENTITY_TYPE]

    def get(self, entity_id: UUID) -> TEntity | None:
        with translate_store_errors(f"get {self._table.name}"):
            return self.session.get(self._entity_cls, entity_id)

    def find_by_natural_key(self, **keys: Any) -> TEntity | None:
        if not keys:
            raise ValueError("find_by_natural_key requires at least one key")
        found = self.find_many(**keys)
        return found[0] if found else None

    def find_many(self, **criteria: Any) -> list[TEntity]:
        stmt = select(self._entity_cls)
        for name, value in criteria.items():
            column = self._table.c[name]
            stmt = stmt.where(column.is_(None) if value is None else column == value)
        stmt = stmt.order_by(self._table.c.created_at, self._table.c.id)
        with translate_store_errors(f"find {self._table.name}"):
            return list(self.session.execute(stmt).scalars().all())

    def create(self, entity: TEntity) -> TEntity:
        with translate_store_errors(self._table.name):
            self.session.add(entity)
            self.session.flush()
        return entity

    def update(self, entity_id: UUID, **fields: Any) -> TEntity:
        entity = self.get(entity_id)
        if entity is None:
            raise LookupError(f"{self._table.name} {entity_id} does not exist")
        with translate_store_errors(self._table.name):
            for name, value in fields.items():
                if name not in self._table.c:
                    raise AttributeError(f"{self._table.name} has no column {name!r}")
                setattr(entity, name, value)
            self.session.flush()
        return entity

    def delete(self, entity_id: UUID) -> None:
        entity = self.get(entity_id)
        if entity is None:
            return
        with translate_store_errors(f"delete {self._table.name}"):
            self.session.delete(entity)
            self.session.flush()


class SqlAlchemySiteRepository(SqlAlchemyEntityRepository[Site]):
    def __init__(self, session: Session) -> None:
        super().__init__(session, Site)

    def find_by_name_casefold(self, name: str) -> list[Site]:
        stmt = (
            select(Site)
            .where(func.lower(func.trim(site_table.c.name)) == name.strip().lower())
            .order_by(site_table.c.created_at, site_table.c.id)
        )
        with translate_store_errors("find site"):
            candidates = self.session.execute(stmt).scalars().all()
        folded = name.strip().casefold()
        return [site for site in candidates if site.name.strip().casefold() == folded]


class SqlAlchemyProjectorModelRepository(SqlAlchemyEntityRepository[ProjectorModel]):
    def __init__(self, session: Session) -> None:
        super().__init__(session, ProjectorModel)


class SqlAlchemyProjectorRepository(SqlAlchemyEntityRepository[Projector]):
    def __init__(self, session: Session) -> None:
        super().__init__(session, Projector)


class SqlAlchemyAudiRepository(SqlAlchemyEntityRepository[Audi]):
    def __init__(self, session: Session) -> None:
        super().__init__(session, Audi)


class SqlAlchemyCaseRepository(SqlAlchemyEntityRepository[ServiceCase]):
    def __init__(self, session: Session) -> None:
        super().__init__(session, ServiceCase)

    def find_key_family(
        self, kind: CaseKind, key_field: CaseKeyField, base_key: str
    ) -> list[ServiceCase]:
        column = service_case_table.c[key_field.value]
        stmt = (
            select(ServiceCase)
            .where(service_case_table.c.kind == kind)
            .where(
                or_(
                    column == base_key,
                    column.like(f"{_escape_like(base_key)}-%", escape="\\"),
                )
            )
            .order_by(service_case_table.c.created_at, service_case_table.c.id)
        )
        with translate_store_errors("find service_case"):
            candidates = self.session.execute(stmt).scalars().all()
        return [
            case
            for case in candidates
            if (key := case.key(key_field)) is not None and key_suffix(key, base_key) is not None
        ]

    def existing_keys(self, kind: CaseKind, key_field: CaseKeyField, base_key: str) -> set[str]:
        return {
            key
            for case in self.find_key_family(kind, key_field, base_key)
            if (key := case.key(key_field)) is not None
        }
