"""Configuration error definitions."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Raised when configuration values are invalid."""


class MissingConfigurationError(ConfigurationError):
    """Raised when required configuration values are absent or blank."""


class InvalidSettingError(ConfigurationError):
    """An environment setting is present but unusable."""

    def __init__(self, name: str, raw: str, reason: str) -> None:
        super().__init__(f"{name}: {reason}, got {raw!r}")
        self.name = name
        self.raw = raw
        self.reason = reason
