"""Integrity checks over a snapshot of the canonical store.

Every function here is pure: it reads entity lists and returns plan entries.
Tie-breaks are explicit (most dependents, then earliest ``created_at``, then
id) so the chosen survivor never depends on query or iteration order.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass
from itertools import combinations
from typing import TYPE_CHECKING, Final

from rapidfuzz import fuzz

from cinerecon.domain.reconciliation.normalize import site_match_key

from .plan import AudiMerge, OrphanedCase, SiteMerge, SiteSuggestion

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from uuid import UUID

    from cinerecon.domain.model import Audi, Projector, ServiceCase, Site

log = logging.getLogger(__name__)

# token_sort_ratio score (0-100) at which two site names are worth a look
DEFAULT_SUGGESTION_THRESHOLD: Final[float] = 90.0


@dataclass(frozen=True, slots=True)
class StoreSnapshot:
    sites: Sequence[Site]
    audis: Sequence[Audi]
    projectors: Sequence[Projector]
    cases: Sequence[ServiceCase]


def plan_site_merges(
    sites: Sequence[Site],
    audis: Sequence[Audi],
    *,
    corrections: Mapping[str, str] | None = None,
) -> list[SiteMerge]:
    """Group sites by normalized name and keep the one with the most audis."""

    audi_counts = Counter(audi.site_id for audi in audis)
    groups: dict[str, list[Site]] = defaultdict(list)
    for site in sites:
        groups[site_match_key(site.name, corrections=corrections)].append(site)

    merges: list[SiteMerge] = []
    for match_key in sorted(groups):
        members = groups[match_key]
        if len(members) < 2:
            continue
        ranked = sorted(members, key=lambda site: (-audi_counts[site.id], site.age_key()))
        keep, losers = ranked[0], ranked[1:]
        merges.append(
            SiteMerge(
                match_key=match_key,
                keep_id=keep.id,
                keep_name=keep.name,
                merge_ids=tuple(site.id for site in losers),
                merge_names=tuple(site.name for site in losers),
                audi_counts={site.id: audi_counts[site.id] for site in members},
            )
        )
    log.debug("Planned %d site merges over %d sites", len(merges), len(sites))
    return merges


def site_redirects(merges: Sequence[SiteMerge]) -> dict[UUID, UUID]:
    return {merged_id: merge.keep_id for merge in merges for merged_id in merge.merge_ids}


def plan_audi_merges(
    audis: Sequence[Audi],
    cases: Sequence[ServiceCase],
    *,
    redirects: Mapping[UUID, UUID] | None = None,
) -> list[AudiMerge]:
    """Group audis by ``(site, audi_no, projector)`` and keep the one with the most cases.

    ``redirects`` maps merged site ids to their survivors, so audis that only
    become duplicates through a planned site merge are caught in the same plan.
    """

    redirects = redirects or {}
    case_counts = Counter(case.audi_id for case in cases if case.audi_id is not None)
    groups: dict[tuple[UUID, str, UUID | None], list[Audi]] = defaultdict(list)
    for audi in audis:
        site_id = redirects.get(audi.site_id, audi.site_id)
        groups[(site_id, audi.audi_no.strip().upper(), audi.projector_id)].append(audi)

    merges: list[AudiMerge] = []
    for (site_id, audi_no, projector_id), members in groups.items():
        if len(members) < 2:
            continue
        ranked = sorted(members, key=lambda audi: (-case_counts[audi.id], audi.age_key()))
        keep, losers = ranked[0], ranked[1:]
        merges.append(
            AudiMerge(
                site_id=site_id,
                audi_no=audi_no,
                projector_id=projector_id,
                keep_id=keep.id,
                merge_ids=tuple(audi.id for audi in losers),
                case_counts={audi.id: case_counts[audi.id] for audi in members},
            )
        )
    merges.sort(key=lambda merge: (str(merge.site_id), merge.audi_no, str(merge.projector_id)))
    return merges


def find_orphaned_cases(
    cases: Sequence[ServiceCase],
    projectors: Sequence[Projector],
    audis: Sequence[Audi],
) -> list[OrphanedCase]:
    """Cases whose serial matches no projector that is installed in an audi."""

    installed_ids = {audi.projector_id for audi in audis if audi.projector_id is not None}
    known: set[str] = set()
    installed: set[str] = set()
    for projector in projectors:
        serial = projector.serial_number.strip().upper()
        known.add(serial)
        if projector.id in installed_ids:
            installed.add(serial)

    orphans: list[OrphanedCase] = []
    for case in sorted(cases, key=lambda case: case.age_key()):
        serial = case.serial_number.strip().upper()
        if serial in installed:
            continue
        if serial in known:
            reason = f"projector {serial} is not installed in any audi"
        else:
            reason = f"no projector with serial number {serial}"
        orphans.append(
            OrphanedCase(
                case_id=case.id,
                kind=case.kind,
                serial_number=case.serial_number,
                natural_key=case.case_number or case.call_log_number or case.rma_number,
                reason=reason,
            )
        )
    return orphans


def suggest_similar_sites(
    sites: Sequence[Site],
    *,
    threshold: float,
    corrections: Mapping[str, str] | None = None,
) -> list[SiteSuggestion]:
    """Report pairs of differently-keyed site names that are fuzzily similar.

    Suggestions are for a human; nothing downstream acts on them.
    """

    representatives: dict[str, Site] = {}
    for site in sorted(sites, key=lambda site: site.age_key()):
        representatives.setdefault(site_match_key(site.name, corrections=corrections), site)

    suggestions: list[SiteSuggestion] = []
    for (key_a, site_a), (key_b, site_b) in combinations(sorted(representatives.items()), 2):
        score = fuzz.token_sort_ratio(key_a, key_b, score_cutoff=threshold)
        if score:
            suggestions.append(
                SiteSuggestion(
                    site_ids=(site_a.id, site_b.id),
                    names=(site_a.name, site_b.name),
                    score=score,
                )
            )
    suggestions.sort(key=lambda suggestion: -suggestion.score)
    return suggestions
