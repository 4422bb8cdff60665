"""Post-hoc integrity checks and explicit repair plans."""

from __future__ import annotations

from .apply import IntegrityAuditor
from .checks import (
    DEFAULT_SUGGESTION_THRESHOLD,
    StoreSnapshot,
    find_orphaned_cases,
    plan_audi_merges,
    plan_site_merges,
    suggest_similar_sites,
)
from .plan import (
    AudiMerge,
    AuditCheck,
    OrphanedCase,
    RepairPlan,
    RepairResult,
    SiteMerge,
    SiteSuggestion,
)

__all__ = [
    "DEFAULT_SUGGESTION_THRESHOLD",
    "AudiMerge",
    "AuditCheck",
    "IntegrityAuditor",
    "OrphanedCase",
    "RepairPlan",
    "RepairResult",
    "SiteMerge",
    "SiteSuggestion",
    "StoreSnapshot",
    "find_orphaned_cases",
    "plan_audi_merges",
    "plan_site_merges",
    "suggest_similar_sites",
]
