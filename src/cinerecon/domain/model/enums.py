"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class EntityType(StrEnum):
    """Canonical entity types, listed in reconciliation dependency order."""

    SITE = "site"
    PROJECTOR_MODEL = "projector_model"
    PROJECTOR = "projector"
    AUDI = "audi"
    CASE = "case"


class RecordKind(StrEnum):
    """Kind of source sheet a raw row comes from."""

    SITE = "site"
    PROJECTOR_MODEL = "projector_model"
    PROJECTOR = "projector"
    AUDI = "audi"
    DTR = "dtr"
    RMA = "rma"


class CaseKind(StrEnum):
    DTR = "dtr"
    RMA = "rma"


class CaseKeyField(StrEnum):
    """Natural-key columns of a service case."""

    CASE_NUMBER = "case_number"
    CALL_LOG_NUMBER = "call_log_number"
    RMA_NUMBER = "rma_number"


class ProjectorStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"


class DtrStatus(StrEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


class RmaStatus(StrEnum):
    OPEN = "open"
    RMA_RAISED_YET_TO_DELIVER = "rma_raised_yet_to_deliver"
    FAULTY_IN_TRANSIT_TO_CDS = "faulty_in_transit_to_cds"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class RmaType(StrEnum):
    RMA = "RMA"
    SRMA = "SRMA"
    RMA_CL = "RMA_CL"
    LAMPS = "Lamps"


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Outcome(StrEnum):
    """Result of one reconciliation or audit step, as reported to diagnostics."""

    CREATED = "created"
    UPDATED = "updated"
    MATCHED = "matched"
    SKIPPED = "skipped"
    AMBIGUOUS = "ambiguous"
    ORPHANED = "orphaned"
    FAILED = "failed"
