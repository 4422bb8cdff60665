"""Reconciliation and audit defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Final

from cinerecon.domain.integrity import DEFAULT_SUGGESTION_THRESHOLD

from .env import env_float, env_int
from .errors import InvalidSettingError

DEFAULT_WORKERS: Final[int] = 1
DEFAULT_MAX_KEY_ATTEMPTS: Final[int] = 5
SITE_TYPOS_ENV: Final[str] = "CINERECON_SITE_TYPOS"
SUGGESTION_THRESHOLD_ENV: Final[str] = "CINERECON_SUGGESTION_THRESHOLD"


@dataclass(frozen=True, slots=True)
class ReconcileConfig:
    workers: int = DEFAULT_WORKERS
    max_key_attempts: int = DEFAULT_MAX_KEY_ATTEMPTS


@dataclass(frozen=True, slots=True)
class AuditConfig:
    site_typos: dict[str, str] = field(default_factory=dict[str, str])
    suggestion_threshold: float = DEFAULT_SUGGESTION_THRESHOLD


def get_reconcile_config() -> ReconcileConfig:
    return ReconcileConfig(
        workers=env_int("CINERECON_WORKERS", DEFAULT_WORKERS, minimum=1),
        max_key_attempts=env_int("CINERECON_MAX_KEY_ATTEMPTS", DEFAULT_MAX_KEY_ATTEMPTS, minimum=1),
    )


def get_audit_config() -> AuditConfig:
    threshold = env_float(SUGGESTION_THRESHOLD_ENV, DEFAULT_SUGGESTION_THRESHOLD)
    if threshold > 100:
        raise InvalidSettingError(SUGGESTION_THRESHOLD_ENV, str(threshold), "must be <= 100")
    return AuditConfig(
        site_typos=parse_typo_pairs(os.getenv(SITE_TYPOS_ENV, "")),
        suggestion_threshold=threshold,
    )


def parse_typo_pairs(raw: str) -> dict[str, str]:
    """Parse ``wrong=right;wrong=right`` into a lowercase correction table."""

    corrections: dict[str, str] = {}
    for chunk in raw.split(";"):
        if not chunk.strip():
            continue
        wrong, sep, right = chunk.partition("=")
        if not sep or not wrong.strip() or not right.strip():
            raise InvalidSettingError(SITE_TYPOS_ENV, chunk, "expected wrong=right")
        corrections[wrong.strip().casefold()] = right.strip().casefold()
    return corrections
