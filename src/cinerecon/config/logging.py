"""Logging setup for the command line."""

from __future__ import annotations

import logging
from typing import Final

# third-party loggers that are noisy at INFO (alembic announces every migration context)
_QUIET_LOGGERS: Final[tuple[str, ...]] = ("alembic", "sqlalchemy.engine")


def configure_logging(*, level: int = logging.INFO, force: bool = False) -> None:
    """Initialise the root logger with a terse CLI format.

    Alembic and SQLAlchemy engine chatter is capped at WARNING unless ``level`` is
    DEBUG. Pass ``force=True`` to reconfigure an already configured root logger.
    """

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
    third_party_level = level if level <= logging.DEBUG else logging.WARNING
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)
