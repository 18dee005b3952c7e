"""
jdk_manager.py
==============
Acquisition & activation engine.

Composes the release catalog, the cache store and the session links into
the operations the CLI exposes:

  use            resolve → ensure → activate
  java_home      live link, else establish one from the default JDK
  set_default    resolve → ensure → persist (no activation)
  update         re-resolve installed majors, fetch newer releases
  ...plus listing, removal and distribution preferences.

Every failure propagates as a ``JpreError`` tagged with its stage.  The
synchronous ``run()`` wrapper turns them into ``Result`` objects for the
CLI.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

import aiohttp

from cache_store import CacheEntry, CacheStore, ProgressCallback
from config import DefaultJdk, JpreConfig, JpreDirs
from context_id import discover_context_id
from errors import (
    CatalogUnavailable,
    ConfigError,
    JpreError,
    NoDefaultConfigured,
    NoMatchingRelease,
)
from java_version import JavaVersion
from release_catalog import DistributionInfo, ReleaseCatalog, ReleaseQuery, ResolvedRelease
from session_links import SessionContext, SessionLinks

logger = logging.getLogger(__name__)

ContextArg = Union[None, str, SessionContext]


# ──────────────────────────────────────────────
#  Result objects
# ──────────────────────────────────────────────

@dataclass
class Result:
    """Unified result for JdkManager operations run from sync code."""

    success: bool
    message: str
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, **details: Any) -> "Result":
        return cls(success=True, message=message, details=details)

    @classmethod
    def fail(cls, message: str, error: Optional[str] = None, **details: Any) -> "Result":
        return cls(success=False, message=message, error=error, details=details)

    @property
    def value(self) -> Any:
        return self.details.get("value")


@dataclass
class UpdateStatus:
    """Outcome of checking one installed (distribution, major) for updates."""

    entry: CacheEntry
    latest: Optional[str] = None
    available: bool = False
    installed_path: Optional[Path] = None
    error: Optional[str] = None


# ──────────────────────────────────────────────
#  JdkManager
# ──────────────────────────────────────────────

class JdkManager:
    """
    Orchestrates resolve, ensure and activate.

    Args:
        config:            Loaded user configuration
        dirs:              Cache / session / config locations
        context_id:        Session id (discovered lazily when omitted)
        session:           Shared aiohttp session (one is created per call if omitted)
        progress_callback: ``async (downloaded, total)`` hook for downloads
    """

    def __init__(
        self,
        config: JpreConfig,
        dirs: JpreDirs,
        context_id: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        self.config = config
        self.dirs = dirs
        self.catalog = ReleaseCatalog(config.catalog_url)
        self.cache = CacheStore(dirs.cache_root)
        self.links = SessionLinks(dirs.session_root)
        self.progress_callback = progress_callback
        self._context_id = context_id
        self._session = session

    @property
    def context_id(self) -> str:
        if self._context_id is None:
            self._context_id = discover_context_id()
        return self._context_id

    def _context(self, context: ContextArg) -> SessionContext:
        if isinstance(context, SessionContext):
            return context
        return self.links.context_for(context or self.context_id)

    @contextlib.asynccontextmanager
    async def _http(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self._session is not None:
            yield self._session
            return
        async with aiohttp.ClientSession() as session:
            yield session

    # ================================================================
    #  ACQUISITION
    # ================================================================

    def _query(self, distribution: str, major: int) -> ReleaseQuery:
        return ReleaseQuery.for_platform(
            distribution,
            major,
            forced_os=self.config.forced_os,
            forced_architecture=self.config.forced_architecture,
            forced_libc=self.config.forced_libc,
        )

    async def _resolve(
        self,
        distribution: Optional[str],
        major: int,
        session: aiohttp.ClientSession,
    ) -> ResolvedRelease:
        """Resolve against *distribution*, or each preferred one in order."""
        candidates = [distribution] if distribution else list(self.config.distributions)
        if not candidates:
            raise ConfigError("No distributions configured; run 'jpre set-distributions'")

        last_error: Optional[NoMatchingRelease] = None
        for dist in candidates:
            try:
                return await self.catalog.resolve(self._query(dist, major), session)
            except NoMatchingRelease as exc:
                logger.info("%s", exc)
                last_error = exc

        if len(candidates) > 1:
            raise NoMatchingRelease(
                f"No GA release of Java {major} from any of: {', '.join(candidates)}",
                major=major,
                distributions=candidates,
            )
        raise last_error

    async def _acquire(
        self,
        distribution: Optional[str],
        major: int,
        session: aiohttp.ClientSession,
    ) -> Path:
        release = await self._resolve(distribution, major, session)
        return await self.cache.ensure(release, session, self.progress_callback)

    def _cached_default(self, default: DefaultJdk) -> Optional[CacheEntry]:
        """Newest installed entry satisfying *default*, preferred distribution first."""
        distributions = [default.distribution] if default.distribution else self.config.distributions
        for dist in distributions:
            entries = [
                e for e in self.cache.find_installed(distribution=dist, major=default.major)
                if e.java_version is not None
            ]
            if entries:
                return max(entries, key=lambda e: e.java_version)
        return None

    # ================================================================
    #  ACTIVATION
    # ================================================================

    async def use(
        self,
        distribution: Optional[str],
        major: int,
        context: ContextArg = None,
    ) -> Path:
        """
        Make Java *major* the active JDK of *context*.

        Returns:
            The activated JDK home.
        """
        ctx = self._context(context)
        async with self._http() as session:
            home = await self._acquire(distribution, major, session)
        self.links.activate(ctx, home)
        return home

    async def java_home(self, context: ContextArg = None) -> Path:
        """
        Link path for *context*, establishing it from the default if needed.

        Raises:
            NoDefaultConfigured: no live link and no default JDK
        """
        ctx = self._context(context)
        if self.links.resolve_active(ctx) is not None:
            return ctx.link_path

        default = self.config.default_jdk
        if default is None:
            raise NoDefaultConfigured(
                "No JDK active in this session and no default configured; "
                "run 'jpre default <major>'",
            )

        try:
            async with self._http() as session:
                home = await self._acquire(default.distribution, default.major, session)
        except CatalogUnavailable as exc:
            cached = self._cached_default(default)
            if cached is None:
                raise
            logger.warning(
                "Catalog unavailable (%s); using cached %s %s",
                exc, cached.distribution, cached.version,
            )
            home = cached.path

        self.links.activate(ctx, home)
        return ctx.link_path

    def resolve_active(self, context: ContextArg = None) -> Optional[Path]:
        return self.links.resolve_active(self._context(context))

    def current_version(self, context: ContextArg = None) -> Optional[str]:
        """Exact version of the session's active JDK, if any."""
        active = self.resolve_active(context)
        if active is None:
            return None
        entry = self.cache.read_entry(active)
        return entry.version if entry else None

    # ================================================================
    #  DEFAULTS & PREFERENCES
    # ================================================================

    async def set_default(self, distribution: Optional[str], major: int) -> Path:
        """Install and persist the default JDK.  Does not touch any session link."""
        async with self._http() as session:
            home = await self._acquire(distribution, major, session)
        self.config.default_jdk = DefaultJdk(major=int(major), distribution=distribution)
        self.config.save(self.dirs.config_path)
        logger.info("Default JDK set to %s", self.config.default_jdk.describe())
        return home

    async def list_distributions(self) -> List[DistributionInfo]:
        async with self._http() as session:
            return await self.catalog.list_distributions(session)

    async def list_versions(self, distribution: Optional[str] = None) -> List[JavaVersion]:
        """Versions published by *distribution* (first preferred one if omitted), newest first."""
        dist = distribution or (self.config.distributions or ["temurin"])[0]
        async with self._http() as session:
            return await self.catalog.list_versions(dist, session)

    async def set_distributions(self, names: List[str]) -> List[str]:
        """
        Validate *names* against the catalog and persist them in order.

        Raises:
            ConfigError: a name matches no distribution or synonym
        """
        if not names:
            raise ConfigError("At least one distribution is required")

        known = await self.list_distributions()
        chosen: List[str] = []
        for name in names:
            match = next((d for d in known if d.matches(name)), None)
            if match is None:
                raise ConfigError(f"Unknown distribution: {name}", distribution=name)
            if match.api_name not in chosen:
                chosen.append(match.api_name)

        self.config.distributions = chosen
        self.config.save(self.dirs.config_path)
        logger.info("Preferred distributions: %s", ", ".join(chosen))
        return chosen

    # ================================================================
    #  CACHE MAINTENANCE
    # ================================================================

    def list_installed(self) -> List[CacheEntry]:
        return self.cache.list_entries()

    def remove(self, distribution: str, version: str) -> Path:
        return self.cache.remove(distribution, version)

    async def update(
        self,
        major: Optional[int] = None,
        check_only: bool = False,
        force: bool = False,
    ) -> List[UpdateStatus]:
        """
        Check each installed (distribution, major) for a newer release.

        Only the newest entry of each pair is considered.  Newer releases are
        installed alongside the old entry unless *check_only*; *force*
        reinstalls entries that are already current.
        """
        newest: Dict[tuple, CacheEntry] = {}
        for entry in self.cache.find_installed(major=major):
            if entry.java_version is None:
                logger.debug("Skipping entry with unparsable version: %s", entry.path)
                continue
            key = (entry.distribution, entry.major)
            if key not in newest or entry.java_version > newest[key].java_version:
                newest[key] = entry

        statuses: List[UpdateStatus] = []
        async with self._http() as session:
            for (dist, entry_major), entry in sorted(newest.items()):
                status = UpdateStatus(entry=entry)
                statuses.append(status)
                try:
                    release = await self.catalog.resolve(self._query(dist, entry_major), session)
                except (CatalogUnavailable, NoMatchingRelease) as exc:
                    logger.warning("Update check failed for %s %s: %s", dist, entry.version, exc)
                    status.error = str(exc)
                    continue

                status.latest = release.version
                status.available = release.java_version > entry.java_version
                if check_only:
                    continue

                if status.available:
                    status.installed_path = await self.cache.ensure(
                        release, session, self.progress_callback,
                    )
                elif force:
                    logger.info("Reinstalling %s %s", dist, release.version)
                    if self.cache.lookup(release) is not None:
                        self.cache.remove(release.distribution, release.version)
                    status.installed_path = await self.cache.ensure(
                        release, session, self.progress_callback,
                    )
        return statuses

    # ================================================================
    #  SYNC WRAPPER
    # ================================================================

    def run(self, operation: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Result:
        """
        Run an async engine operation to completion for sync callers.

        Owns the event loop and the aiohttp session for the call.  Engine
        errors become ``Result.fail``; anything else propagates.
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            return Result.fail(
                "Cannot run a sync operation inside an async context",
                error="Await the JdkManager coroutine instead",
            )

        name = getattr(operation, "__name__", "operation")

        async def _call() -> Any:
            if self._session is not None:
                return await operation(*args, **kwargs)
            async with aiohttp.ClientSession() as session:
                self._session = session
                try:
                    return await operation(*args, **kwargs)
                finally:
                    self._session = None

        try:
            value = asyncio.run(_call())
        except JpreError as exc:
            logger.debug("%s failed at stage %s", name, exc.stage, exc_info=True)
            return Result.fail(exc.message, error=exc.kind, stage=exc.stage, **exc.details)
        return Result.ok(f"{name} complete", value=value)
