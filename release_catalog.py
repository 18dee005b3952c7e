"""
release_catalog.py
==================
Client for the Foojay Disco API – the remote catalog of JDK builds.

Responsibilities:
  - Map the current platform to catalog OS / architecture / libc ids
  - Query candidate packages for (distribution, major version)
  - Select the single most recent GA release (stable on ties)
  - Resolve download URL and checksum metadata for it
  - List distributions and the versions they publish

The client is read-only: it performs no local mutation.
"""

from __future__ import annotations

import asyncio
import logging
import platform
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlparse

import aiohttp

from archive_extractor import ArchiveKind
from errors import CatalogUnavailable, NoMatchingRelease
from java_version import JavaVersion

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
#  Constants
# ──────────────────────────────────────────────

FOOJAY_API = "https://api.foojay.io/disco/v3.0"

USER_AGENT = "jpre/0.4.0"

# Map platform.system() → catalog OS identifier
_OS_MAP: Dict[str, str] = {
    "Linux": "linux",
    "Darwin": "macos",
    "Windows": "windows",
}

# Map platform.machine() → catalog architecture identifier
_ARCH_MAP: Dict[str, str] = {
    "x86_64": "x64",
    "AMD64": "x64",
    "amd64": "x64",
    "aarch64": "aarch64",
    "arm64": "aarch64",
    "ARM64": "aarch64",
    "x86": "x86",
    "i386": "x86",
    "i686": "x86",
}

_DISTRIBUTION_NOT_FOUND = "Requested distribution not found"


# ──────────────────────────────────────────────
#  Platform detection
# ──────────────────────────────────────────────

def detect_libc() -> str:
    """Return ``glibc`` or ``musl`` on Linux, empty string elsewhere."""
    if platform.system() != "Linux":
        return ""
    name, _ = platform.libc_ver()
    return "glibc" if name == "glibc" else "musl"


def detect_os(libc: str = "") -> Optional[str]:
    os_id = _OS_MAP.get(platform.system())
    if os_id == "linux" and libc == "musl":
        return "linux-musl"
    return os_id


def detect_architecture() -> Optional[str]:
    return _ARCH_MAP.get(platform.machine())


# ──────────────────────────────────────────────
#  Data model
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class ReleaseQuery:
    """What the user asked for, pinned to a platform."""

    distribution: str
    major: int
    os: str
    architecture: str
    libc: str = ""

    @classmethod
    def for_platform(
        cls,
        distribution: str,
        major: int,
        forced_os: Optional[str] = None,
        forced_architecture: Optional[str] = None,
        forced_libc: Optional[str] = None,
    ) -> "ReleaseQuery":
        """
        Build a query for the running machine.

        Raises:
            NoMatchingRelease: if the OS or architecture has no catalog id
        """
        libc = forced_libc if forced_libc is not None else detect_libc()
        os_id = forced_os or detect_os(libc)
        arch = forced_architecture or detect_architecture()
        if not os_id:
            raise NoMatchingRelease(
                f"Unsupported OS: {platform.system()}; set forced_os in the config",
            )
        if not arch:
            raise NoMatchingRelease(
                f"Unsupported architecture: {platform.machine()}; "
                "set forced_architecture in the config",
            )
        return cls(
            distribution=distribution,
            major=int(major),
            os=os_id,
            architecture=arch,
            libc=libc,
        )

    def describe(self) -> str:
        return f"{self.distribution} {self.major} ({self.os}/{self.architecture})"


@dataclass(frozen=True)
class ResolvedRelease:
    """A concrete, downloadable release.  ``(distribution, version)`` is the cache key."""

    distribution: str
    version: str
    download_url: str
    archive_kind: ArchiveKind
    checksum: str = ""
    checksum_url: Optional[str] = None
    filename: str = ""
    size: int = 0

    @property
    def java_version(self) -> JavaVersion:
        return JavaVersion.parse(self.version)

    @property
    def major(self) -> int:
        return self.java_version.major

    @property
    def cache_name(self) -> str:
        return cache_name(self.distribution, self.version)


def cache_name(distribution: str, version: str) -> str:
    """Deterministic, filesystem-safe directory name for a cache entry."""
    raw = f"{distribution}-{version}"
    return "".join(c if c.isalnum() or c in "._+-" else "_" for c in raw)


@dataclass
class DistributionInfo:
    """A distribution listed by the catalog."""

    name: str
    api_name: str
    synonyms: List[str] = field(default_factory=list)

    def matches(self, value: str) -> bool:
        value = value.strip().lower()
        names = {self.name.lower(), self.api_name.lower()}
        names.update(s.lower() for s in self.synonyms)
        return value in names


# ──────────────────────────────────────────────
#  Catalog client
# ──────────────────────────────────────────────

class ReleaseCatalog:
    """
    Foojay Disco API client.

    Args:
        base_url: Catalog root (defaults to the public Foojay endpoint)
        timeout:  Total seconds allowed per catalog request
    """

    HEADERS = {"User-Agent": USER_AGENT, "Accept": "application/json"}

    def __init__(self, base_url: str = FOOJAY_API, timeout: float = 30) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    # ================================================================
    #  RESOLUTION
    # ================================================================

    async def resolve(
        self,
        query: ReleaseQuery,
        session: aiohttp.ClientSession,
    ) -> ResolvedRelease:
        """
        Resolve *query* to the most recent matching GA release.

        Raises:
            CatalogUnavailable: transport / HTTP failure
            NoMatchingRelease:  nothing matches on this platform
        """
        params = {
            "package_type": "jdk",
            "jdk_version": str(query.major),
            "distribution": query.distribution,
            "operating_system": query.os,
            "architecture": query.architecture,
            "release_status": "ga",
            "directly_downloadable": "true",
            "with_javafx_if_available": "false",
        }
        if query.libc and query.os.startswith("linux"):
            params["libc_type"] = query.libc

        logger.info("Querying catalog for %s", query.describe())
        packages = await self._call(session, f"{self.base_url}/packages", params)

        best: Optional[Dict[str, Any]] = None
        best_version: Optional[JavaVersion] = None
        for package in packages:
            version = self._candidate_version(package, query)
            if version is None:
                continue
            # Strict ">" keeps the first-listed entry on ties
            if best_version is None or version > best_version:
                best, best_version = package, version

        if best is None or best_version is None:
            raise NoMatchingRelease(
                f"No GA release of {query.describe()} in the catalog",
                distribution=query.distribution,
                major=query.major,
            )

        logger.info(
            "Resolved %s → %s %s (%s)",
            query.describe(), best.get("distribution", query.distribution),
            best_version, best.get("archive_type"),
        )
        return await self._release_from_package(session, best, best_version, query)

    def _candidate_version(
        self, package: Dict[str, Any], query: ReleaseQuery,
    ) -> Optional[JavaVersion]:
        """Return the parsed version if *package* satisfies *query*, else None."""
        if not isinstance(package, dict):
            return None

        # No distribution check: the catalog already filtered on it and
        # labels packages with the canonical name, not the synonym queried.
        for key, wanted in (
            ("operating_system", query.os),
            ("architecture", query.architecture),
        ):
            value = package.get(key)
            if value is not None and str(value) != wanted:
                return None
        status = package.get("release_status")
        if status is not None and status != "ga":
            return None
        if not ArchiveKind.is_supported(package.get("archive_type", "")):
            logger.debug("Skipping unsupported archive type %r", package.get("archive_type"))
            return None

        version = JavaVersion.try_parse(str(package.get("java_version", "")))
        if version is None:
            logger.debug("Skipping unparsable version %r", package.get("java_version"))
            return None
        if not version.is_ga:
            return None

        major = package.get("major_version")
        if major is not None:
            try:
                if int(major) != query.major:
                    return None
            except (TypeError, ValueError):
                return None
        elif version.major != query.major:
            return None

        return version

    async def _release_from_package(
        self,
        session: aiohttp.ClientSession,
        package: Dict[str, Any],
        version: JavaVersion,
        query: ReleaseQuery,
    ) -> ResolvedRelease:
        links = package.get("links") or {}
        info: Dict[str, Any] = {}
        info_uri = links.get("pkg_info_uri")
        if info_uri:
            result = await self._call(session, info_uri)
            if result and isinstance(result[0], dict):
                info = result[0]

        download_url = info.get("direct_download_uri") or links.get("pkg_download_redirect")
        if not download_url:
            raise CatalogUnavailable(
                f"Catalog returned no download URL for {query.distribution} {version}",
                url=info_uri,
            )

        checksum = ""
        if str(info.get("checksum_type", "")).lower() == "sha256":
            checksum = str(info.get("checksum") or "")

        filename = (
            package.get("filename")
            or info.get("filename")
            or urlparse(download_url).path.rsplit("/", 1)[-1]
        )

        return ResolvedRelease(
            distribution=str(package.get("distribution") or query.distribution).lower(),
            version=str(version),
            download_url=download_url,
            archive_kind=ArchiveKind.from_catalog(package.get("archive_type", "")),
            checksum=checksum,
            checksum_url=info.get("checksum_uri") or None,
            filename=filename,
            size=int(package.get("size") or 0),
        )

    # ================================================================
    #  LISTINGS
    # ================================================================

    async def list_distributions(
        self, session: aiohttp.ClientSession,
    ) -> List[DistributionInfo]:
        """All distributions known to the catalog, with their synonyms."""
        result = await self._call(
            session,
            f"{self.base_url}/distributions",
            {"include_versions": "false", "include_synonyms": "true"},
        )
        distributions = [
            DistributionInfo(
                name=str(d.get("name", "")),
                api_name=str(d.get("api_parameter") or d.get("name", "")).lower(),
                synonyms=[str(s) for s in d.get("synonyms", [])],
            )
            for d in result
            if isinstance(d, dict)
        ]
        return sorted(distributions, key=lambda d: d.api_name)

    async def list_versions(
        self, distribution: str, session: aiohttp.ClientSession,
    ) -> List[JavaVersion]:
        """Versions published by *distribution*, newest first."""
        result = await self._call(
            session,
            f"{self.base_url}/distributions/{quote(distribution)}",
            {"latest_per_update": "true"},
        )
        versions = set()
        for entry in result:
            raw_versions = entry.get("versions", []) if isinstance(entry, dict) else [entry]
            for raw in raw_versions:
                parsed = JavaVersion.try_parse(str(raw))
                if parsed is not None:
                    versions.add(parsed)
        return sorted(versions, reverse=True)

    # ================================================================
    #  HTTP
    # ================================================================

    async def _call(
        self,
        session: aiohttp.ClientSession,
        url: str,
        params: Optional[Dict[str, str]] = None,
    ) -> List[Any]:
        """GET a catalog endpoint and return its ``result`` list."""
        try:
            async with session.get(
                url, params=params, headers=self.HEADERS,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                try:
                    data = await resp.json(content_type=None)
                except ValueError as exc:
                    raise CatalogUnavailable(
                        f"Catalog returned invalid JSON from {url} (HTTP {resp.status})",
                        url=url,
                    ) from exc
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise CatalogUnavailable(
                f"Could not reach release catalog at {url}: {exc}",
                url=url,
            ) from exc

        message = data.get("message", "") if isinstance(data, dict) else ""
        if status >= 400:
            if message == _DISTRIBUTION_NOT_FOUND:
                raise NoMatchingRelease(
                    f"Unknown distribution: {(params or {}).get('distribution') or url}",
                    url=url,
                )
            raise CatalogUnavailable(
                f"Catalog returned HTTP {status} for {url}: {message or 'no message'}",
                url=url,
                status=status,
            )

        if isinstance(data, dict):
            result = data.get("result", [])
        else:
            result = data
        if not isinstance(result, list):
            result = [result]
        return result
