"""
errors.py
=========
Error taxonomy for the acquisition & activation engine.

Every error carries the pipeline stage that raised it so the CLI can tell
the user *where* a ``use`` failed (resolve, download, verify, extract,
cache, activate, config) and *what* input triggered it.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class JpreError(Exception):
    """Base class for all engine errors."""

    default_stage = "unknown"

    def __init__(
        self,
        message: str,
        *,
        stage: Optional[str] = None,
        **details: Any,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage or self.default_stage
        self.details: Dict[str, Any] = details

    @property
    def kind(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        return self.message


class CatalogUnavailable(JpreError):
    """Transport failure talking to the release catalog or a download host."""

    default_stage = "resolve"


class NoMatchingRelease(JpreError):
    """The catalog has no GA release for the query on this platform."""

    default_stage = "resolve"


class ChecksumMismatch(JpreError):
    """Downloaded bytes failed the integrity check (or could not be checked)."""

    default_stage = "verify"


class ExtractError(JpreError):
    """Corrupt archive, unsafe entry, or no JDK home inside the archive."""

    default_stage = "extract"


class CacheError(JpreError):
    """Filesystem failure while promoting, reading or removing a cache entry."""

    default_stage = "cache"


class ActivationError(JpreError):
    """The per-session symlink could not be created or replaced."""

    default_stage = "activate"


class ConfigError(JpreError):
    """Invalid or unreadable configuration."""

    default_stage = "config"


class NoDefaultConfigured(ConfigError):
    """An operation needed the default JDK but none is set."""
