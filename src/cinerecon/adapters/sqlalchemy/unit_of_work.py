"""Engine lifecycle and the SQLAlchemy unit of work over the canonical store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from cinerecon.adapters.sqlalchemy.mappings import start_mappers
from cinerecon.adapters.sqlalchemy.migrations import upgrade_head
from cinerecon.adapters.sqlalchemy.repositories import (
    SqlAlchemyAudiRepository,
    SqlAlchemyCaseRepository,
    SqlAlchemyProjectorModelRepository,
    SqlAlchemyProjectorRepository,
    SqlAlchemySiteRepository,
    translate_store_errors,
)
from cinerecon.config import DEFAULT_STORE_TIMEOUT_SECONDS, get_database_config
from cinerecon.domain.ports.unit_of_work import ReconciliationRepositories

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)


class StartupError(RuntimeError):
    """Raised when the store is used before ``startup()`` or reconfigured without ``force``."""


@dataclass(slots=True)
class _StoreState:
    engine: Engine | None = None
    session_factory: sessionmaker[Session] | None = None

    def install(self, engine: Engine) -> None:
        self.engine = engine
        self.session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    def reset(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
        self.engine = None
        self.session_factory = None

    def require_session_factory(self) -> sessionmaker[Session]:
        if self.session_factory is None:
            raise StartupError(
                "Canonical store not started. Call cinerecon.adapters.sqlalchemy."
                "unit_of_work.startup() before opening a unit of work."
            )
        return self.session_factory


_STATE = _StoreState()


def build_engine(
    database_uri: str,
    *,
    store_timeout: float = DEFAULT_STORE_TIMEOUT_SECONDS,
) -> Engine:
    """Create an engine whose lock waits, pool checkouts and statements are time bounded."""

    url = make_url(database_uri)
    backend = url.get_backend_name()
    connect_args: dict[str, Any] = {}
    engine_args: dict[str, Any] = {}
    if backend == "sqlite":
        # busy timeout; reconciliation workers share the engine across threads
        connect_args["timeout"] = store_timeout
        connect_args["check_same_thread"] = False
    else:
        engine_args["pool_timeout"] = store_timeout
        if backend == "postgresql":
            connect_args["options"] = f"-c statement_timeout={int(store_timeout * 1000)}"
    return create_engine(url, connect_args=connect_args, future=True, **engine_args)


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
    migrate: bool = True,
) -> None:
    """Map the domain classes, migrate the schema and install the engine."""

    if _STATE.engine is not None and not force:
        raise StartupError("Canonical store already started. Pass force=True to reconfigure.")

    if engine is None:
        database_config = get_database_config()
        engine = build_engine(
            database_uri or database_config.uri,
            store_timeout=database_config.store_timeout_seconds,
        )
    start_mappers()
    if migrate:
        upgrade_head(engine=engine)

    if _STATE.engine is not None and _STATE.engine is not engine:
        _STATE.engine.dispose()
    _STATE.install(engine)
    log.debug("Canonical store ready at %s", engine.url.render_as_string(hide_password=True))


def configured_engine() -> Engine | None:
    return _STATE.engine


def is_started() -> bool:
    return _STATE.engine is not None


def shutdown() -> None:
    """Dispose the engine and forget it (tests reset through this)."""

    _STATE.reset()


class SqlAlchemyReconciliationUnitOfWork:
    """One session over every canonical entity repository.

    Repositories flush on every write so unique-key races surface at the write
    that caused them; nothing is durable until ``commit``. Leaving the block
    without committing rolls the session back.
    """

    def __init__(self) -> None:
        self._session_factory = _STATE.require_session_factory()
        self._session: Session | None = None
        self._repositories: ReconciliationRepositories | None = None

    def __enter__(self) -> SqlAlchemyReconciliationUnitOfWork:
        if self._session is not None:
            raise StartupError("Unit of work already entered")
        session = self._session_factory()
        self._session = session
        self._repositories = ReconciliationRepositories(
            sites=SqlAlchemySiteRepository(session),
            projector_models=SqlAlchemyProjectorModelRepository(session),
            projectors=SqlAlchemyProjectorRepository(session),
            audis=SqlAlchemyAudiRepository(session),
            cases=SqlAlchemyCaseRepository(session),
        )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        session = self.session
        try:
            if exc_type is not None:
                self.rollback()
        finally:
            session.close()
            self._session = None
            self._repositories = None
        return False

    def commit(self) -> None:
        with translate_store_errors("commit"):
            self.session.commit()

    def rollback(self) -> None:
        with translate_store_errors("rollback"):
            self.session.rollback()

    @property
    def repositories(self) -> ReconciliationRepositories:
        if self._repositories is None:
            raise StartupError("Unit of work used outside its with-block")
        return self._repositories

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StartupError("Unit of work used outside its with-block")
        return self._session


if TYPE_CHECKING:
    from cinerecon.domain.ports import ReconciliationUnitOfWork

    _uow_check: ReconciliationUnitOfWork = SqlAlchemyReconciliationUnitOfWork()
