"""Rule-chain matching of normalized keys against canonical candidates.

Rules are evaluated in priority order and the first rule that selects any
candidate decides the result: one candidate is UNIQUE, several are AMBIGUOUS.
Rules are never combined across priority levels and nothing here does fuzzy
or partial string matching. The matcher is pure; callers supply the pool.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cinerecon.domain.model import Entity

from .contracts import AmbiguousMatch, MatchResult, NoMatch, UniqueMatch
from .disambiguate import key_suffix

if TYPE_CHECKING:
    from uuid import UUID

    from cinerecon.domain.model import (
        Audi,
        CaseKeyField,
        Projector,
        ProjectorModel,
        ServiceCase,
        Site,
    )

    from .rows import CaseKeys


@dataclass(frozen=True, slots=True)
class MatchRule[TEntity: Entity]:
    name: str
    predicate: Callable[[TEntity], bool]


def run_rule_chain[TEntity: Entity](
    rules: Iterable[MatchRule[TEntity]],
    pool: Iterable[TEntity],
) -> MatchResult[TEntity]:
    """Evaluate ``rules`` in order against ``pool``; first non-empty rule wins."""

    candidates = _dedupe(pool)
    for rule in rules:
        hits = tuple(candidate for candidate in candidates if rule.predicate(candidate))
        if not hits:
            continue
        if len(hits) == 1:
            return UniqueMatch(entity=hits[0], rule=rule.name)
        return AmbiguousMatch(candidates=hits, rule=rule.name)
    return NoMatch(reason="no_rule_matched")


def _dedupe[TEntity: Entity](pool: Iterable[TEntity]) -> tuple[TEntity, ...]:
    seen: set[UUID] = set()
    deduped: list[TEntity] = []
    for candidate in pool:
        if candidate.id in seen:
            continue
        seen.add(candidate.id)
        deduped.append(candidate)
    return tuple(deduped)


def _same_identifier(stored: str | None, wanted: str) -> bool:
    return stored is not None and stored.strip().upper() == wanted


# Master data -----------------------------------------------------------------


def match_site(name: str, pool: Iterable[Site]) -> MatchResult[Site]:
    folded = name.casefold()
    return run_rule_chain(
        (
            MatchRule("exact_name", lambda site: site.name.strip() == name),
            MatchRule("casefold_name", lambda site: site.name.strip().casefold() == folded),
        ),
        pool,
    )


def match_projector_model(model_no: str, pool: Iterable[ProjectorModel]) -> MatchResult[ProjectorModel]:
    return run_rule_chain(
        (MatchRule("model_no", lambda model: _same_identifier(model.model_no, model_no)),),
        pool,
    )


def match_projector(serial_number: str, pool: Iterable[Projector]) -> MatchResult[Projector]:
    return run_rule_chain(
        (
            MatchRule(
                "serial_number",
                lambda projector: _same_identifier(projector.serial_number, serial_number),
            ),
        ),
        pool,
    )


def match_audi(
    *,
    site_id: UUID,
    audi_no: str,
    projector_id: UUID | None,
    pool: Iterable[Audi],
) -> MatchResult[Audi]:
    """Audi identity is ``(site, audi_no)``, refined by the installed projector.

    The last rule picks up placeholder audis (``AUTO-<n>``) that hold the row's
    projector so their number and site can be corrected in place.
    """

    def at_site(audi: Audi) -> bool:
        return audi.site_id == site_id and _same_identifier(audi.audi_no, audi_no)

    rules: list[MatchRule[Audi]] = []
    if projector_id is not None:
        rules.append(
            MatchRule("site_audi_projector", lambda audi: at_site(audi) and audi.projector_id == projector_id)
        )
    rules.append(MatchRule("site_audi", at_site))
    if projector_id is not None:
        rules.append(
            MatchRule(
                "placeholder_projector",
                lambda audi: audi.is_placeholder and audi.projector_id == projector_id,
            )
        )
    return run_rule_chain(rules, pool)


# Cases -----------------------------------------------------------------------


def match_case(
    keys: CaseKeys,
    *,
    serial_number: str,
    pool: Iterable[ServiceCase],
    is_live: Callable[[ServiceCase], bool] = lambda _case: True,
) -> MatchResult[ServiceCase]:
    """Match a case row on its primary key, then on its secondary key.

    Only live candidates (not claimed by an earlier row of the same run) for the
    same serial number are considered: a key held by a case for another serial
    is a collision, not a match. Within a key, the bare value wins; otherwise the
    lowest-numbered disambiguated variant is taken, which replays the suffix
    order of an earlier run.
    """

    live = tuple(
        case
        for case in _dedupe(pool)
        if is_live(case) and _same_identifier(case.serial_number, serial_number)
    )

    if keys.primary is not None:
        primary = _match_key_family(keys.primary_field, keys.primary, live, rule="primary_key")
        if not isinstance(primary, NoMatch):
            return primary

    if keys.secondary_field is None or keys.secondary is None:
        return NoMatch(reason="no_key_match")

    secondary = _match_key_family(keys.secondary_field, keys.secondary, live, rule="secondary_key")
    if isinstance(secondary, UniqueMatch) and keys.primary is not None:
        held = secondary.entity.key(keys.primary_field)
        if held is not None and key_suffix(held, keys.primary) is None:
            return AmbiguousMatch(
                candidates=(secondary.entity,),
                rule="secondary_key",
                reason="primary_key_disagrees",
            )
    return secondary


def _match_key_family(
    key_field: CaseKeyField,
    base_key: str,
    live: tuple[ServiceCase, ...],
    *,
    rule: str,
) -> MatchResult[ServiceCase]:
    exact = tuple(case for case in live if case.key(key_field) == base_key)
    if len(exact) == 1:
        return UniqueMatch(entity=exact[0], rule=rule)
    if exact:
        return AmbiguousMatch(candidates=exact, rule=rule)

    variants: dict[int, list[ServiceCase]] = {}
    for case in live:
        held = case.key(key_field)
        suffix = key_suffix(held, base_key) if held is not None else None
        if suffix:
            variants.setdefault(suffix, []).append(case)
    if not variants:
        return NoMatch(reason="no_key_match")
    lowest = variants[min(variants)]
    if len(lowest) == 1:
        return UniqueMatch(entity=lowest[0], rule=f"{rule}_variant")
    return AmbiguousMatch(candidates=tuple(lowest), rule=f"{rule}_variant")
