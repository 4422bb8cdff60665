"""Application configuration helpers."""

from __future__ import annotations

from .env import env_float, env_int, require_env_vars
from .errors import ConfigurationError, InvalidSettingError, MissingConfigurationError
from .logging import configure_logging
from .reconcile import (
    AuditConfig,
    ReconcileConfig,
    get_audit_config,
    get_reconcile_config,
    parse_typo_pairs,
)
from .storage import (
    DEFAULT_STORE_TIMEOUT_SECONDS,
    DatabaseConfig,
    StorageConfig,
    get_database_config,
    get_storage_config,
)

__all__ = [
    "DEFAULT_STORE_TIMEOUT_SECONDS",
    "AuditConfig",
    "ConfigurationError",
    "DatabaseConfig",
    "InvalidSettingError",
    "MissingConfigurationError",
    "ReconcileConfig",
    "StorageConfig",
    "configure_logging",
    "env_float",
    "env_int",
    "get_audit_config",
    "get_database_config",
    "get_reconcile_config",
    "get_storage_config",
    "parse_typo_pairs",
    "require_env_vars",
]
