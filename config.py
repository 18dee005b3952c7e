"""
config.py
=========
Persisted user preferences and the directory layout.

  - ``JpreConfig`` – default JDK, preferred distributions, platform
                     overrides and the catalog URL (``config.json``)
  - ``JpreDirs``   – cache root, session root and config path, derived
                     once from the environment and injected everywhere
"""

from __future__ import annotations

import json
import logging
import os
import platform
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from errors import ConfigError
from release_catalog import FOOJAY_API

logger = logging.getLogger(__name__)

DEFAULT_DISTRIBUTIONS = ["temurin"]

_KNOWN_KEYS = {
    "default_jdk", "distributions", "distribution",
    "forced_os", "forced_architecture", "forced_libc", "catalog_url",
}


# ──────────────────────────────────────────────
#  Default version
# ──────────────────────────────────────────────

@dataclass
class DefaultJdk:
    """The JDK used by sessions without an explicit ``use``."""

    major: int
    distribution: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"distribution": self.distribution, "major": self.major}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DefaultJdk":
        try:
            major = int(data["major"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid default_jdk entry: {data!r}") from exc
        return cls(major=major, distribution=data.get("distribution") or None)

    def describe(self) -> str:
        return f"{self.distribution or '<preferred>'} {self.major}"


# ──────────────────────────────────────────────
#  Config file
# ──────────────────────────────────────────────

@dataclass
class JpreConfig:
    """Contents of ``config.json``."""

    default_jdk: Optional[DefaultJdk] = None
    distributions: List[str] = field(default_factory=lambda: list(DEFAULT_DISTRIBUTIONS))
    forced_os: Optional[str] = None
    forced_architecture: Optional[str] = None
    forced_libc: Optional[str] = None
    catalog_url: str = FOOJAY_API
    path: Optional[Path] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        data.update({
            "default_jdk": self.default_jdk.to_dict() if self.default_jdk else None,
            "distributions": list(self.distributions),
            "forced_os": self.forced_os,
            "forced_architecture": self.forced_architecture,
            "forced_libc": self.forced_libc,
            "catalog_url": self.catalog_url,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: Optional[Path] = None) -> "JpreConfig":
        if not isinstance(data, dict):
            raise ConfigError(f"Config must be a JSON object: {path}", path=str(path))

        distributions = data.get("distributions")
        legacy = data.get("distribution")
        if not distributions and isinstance(legacy, str) and legacy:
            logger.info("Migrating legacy 'distribution' setting: %s", legacy)
            distributions = [legacy]
        if distributions is None:
            distributions = list(DEFAULT_DISTRIBUTIONS)
        if not isinstance(distributions, list) or not all(
            isinstance(d, str) and d for d in distributions
        ):
            raise ConfigError(
                f"'distributions' must be a list of names, got {distributions!r}",
                path=str(path),
            )

        raw_default = data.get("default_jdk")
        return cls(
            default_jdk=DefaultJdk.from_dict(raw_default) if raw_default else None,
            distributions=[d.lower() for d in distributions],
            forced_os=data.get("forced_os") or None,
            forced_architecture=data.get("forced_architecture") or None,
            forced_libc=data.get("forced_libc") or None,
            catalog_url=data.get("catalog_url") or FOOJAY_API,
            path=path,
            extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
        )

    @classmethod
    def load(cls, path: Path) -> "JpreConfig":
        """Load *path*; a missing file yields the defaults."""
        path = Path(path)
        if not path.exists():
            logger.debug("Config file %s not found, using defaults", path)
            return cls(path=path)
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Could not read config {path}: {exc}", path=str(path)) from exc
        logger.debug("Config loaded from %s", path)
        return cls.from_dict(data, path=path)

    def save(self, path: Optional[Path] = None) -> None:
        """Write the config atomically (temp file + rename)."""
        if path is None and self.path is None:
            raise ConfigError("No config path to save to")
        target = Path(path or self.path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".config-", suffix=".json", dir=target.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(self.to_dict(), fh, indent=2)
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise ConfigError(f"Could not save config {target}: {exc}", path=str(target)) from exc
        self.path = target
        logger.debug("Config saved to %s", target)


# ──────────────────────────────────────────────
#  Directory layout
# ──────────────────────────────────────────────

def _home() -> Path:
    return Path.home()


def default_cache_root(environ: Mapping[str, str], system: str) -> Path:
    if environ.get("JPRE_CACHE_DIR"):
        return Path(environ["JPRE_CACHE_DIR"])
    if system == "Windows":
        base = environ.get("LOCALAPPDATA") or str(_home() / "AppData" / "Local")
        return Path(base) / "jpre" / "cache"
    if system == "Darwin":
        return _home() / "Library" / "Caches" / "jpre"
    if environ.get("XDG_CACHE_HOME"):
        return Path(environ["XDG_CACHE_HOME"]) / "jpre"
    return _home() / ".cache" / "jpre"


def default_config_path(environ: Mapping[str, str], system: str) -> Path:
    if environ.get("JPRE_CONFIG"):
        return Path(environ["JPRE_CONFIG"])
    if system == "Windows":
        base = environ.get("APPDATA") or str(_home() / "AppData" / "Roaming")
        return Path(base) / "jpre" / "config.json"
    if system == "Darwin":
        return _home() / "Library" / "Preferences" / "jpre" / "config.json"
    if environ.get("XDG_CONFIG_HOME"):
        return Path(environ["XDG_CONFIG_HOME"]) / "jpre" / "config.json"
    return _home() / ".config" / "jpre" / "config.json"


def default_session_root(environ: Mapping[str, str]) -> Path:
    """Volatile per-user area for session links, outside the cache root."""
    if environ.get("XDG_RUNTIME_DIR"):
        return Path(environ["XDG_RUNTIME_DIR"]) / "jpre" / "java-home-by-context"
    try:
        user = str(os.getuid())
    except AttributeError:
        user = environ.get("USERNAME", "user")
    return Path(tempfile.gettempdir()) / f"jpre-{user}" / "java-home-by-context"


@dataclass(frozen=True)
class JpreDirs:
    """Every filesystem location the engine touches."""

    cache_root: Path
    session_root: Path
    config_path: Path

    @property
    def log_dir(self) -> Path:
        return self.cache_root / "logs"

    @classmethod
    def from_environment(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        config_path: Optional[Path] = None,
    ) -> "JpreDirs":
        env = os.environ if environ is None else environ
        system = platform.system()
        return cls(
            cache_root=default_cache_root(env, system),
            session_root=default_session_root(env),
            config_path=Path(config_path) if config_path else default_config_path(env, system),
        )
