"""Ports implemented by adapters outside the reconciliation core."""

from __future__ import annotations

from .diagnostics import Diagnostic, DiagnosticsSink
from .persistence import (
    AudiRepository,
    CaseRepository,
    CanonicalRepository,
    ProjectorModelRepository,
    ProjectorRepository,
    SiteRepository,
)
from .rows import RawRow, RowSource, SourceRow, UnreadableRow
from .unit_of_work import ReconciliationRepositories, ReconciliationUnitOfWork, UnitOfWork

__all__ = [
    "AudiRepository",
    "CanonicalRepository",
    "CaseRepository",
    "Diagnostic",
    "DiagnosticsSink",
    "ProjectorModelRepository",
    "ProjectorRepository",
    "RawRow",
    "ReconciliationRepositories",
    "ReconciliationUnitOfWork",
    "RowSource",
    "SiteRepository",
    "SourceRow",
    "UnitOfWork",
    "UnreadableRow",
]
