"""Match result contracts shared by the matcher and the reconciler."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Literal

from cinerecon.domain.model import Entity


class MatchStatus(StrEnum):
    """Outcome of running a rule chain against a candidate pool."""

    NONE = "none"
    UNIQUE = "unique"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True, slots=True, kw_only=True)
class NoMatch:
    """No rule selected a candidate; the entity must be created."""

    reason: str | None = None
    status: Literal[MatchStatus.NONE] = MatchStatus.NONE


@dataclass(frozen=True, slots=True, kw_only=True)
class UniqueMatch[TEntity: Entity]:
    """Exactly one live candidate matched."""

    entity: TEntity
    rule: str
    status: Literal[MatchStatus.UNIQUE] = MatchStatus.UNIQUE


@dataclass(frozen=True, slots=True, kw_only=True)
class AmbiguousMatch[TEntity: Entity]:
    """A rule matched several live candidates, or keys disagree."""

    candidates: tuple[TEntity, ...]
    rule: str
    reason: str = "multiple_candidates"
    status: Literal[MatchStatus.AMBIGUOUS] = MatchStatus.AMBIGUOUS

    def __post_init__(self) -> None:
        if not self.candidates:
            raise ValueError("Ambiguous match must include at least one candidate")


type MatchResult[TEntity: Entity] = NoMatch | UniqueMatch[TEntity] | AmbiguousMatch[TEntity]
