"""
cache_store.py
==============
The shared on-disk JDK cache.

Layout under the cache root:
  jdks/<distribution>-<exact version>/   extracted JDK home + .jpre.json marker
  jdks/.staging-*/                       in-flight extractions (never final)
  downloads/*.part                       in-flight archive downloads

Concurrency discipline (many processes may share one cache root):
  - never mutate an entry in place
  - extract into a sibling staging directory, then rename into place
  - if the rename target already exists, another process won the race:
    discard our copy and use theirs

Killed processes can leave ``.staging-*`` and ``*.part`` litter behind;
it never occupies a final entry name and is ignored by listings.
"""

from __future__ import annotations

import asyncio
import errno
import json
import logging
import os
import shutil
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp
import psutil

from archive_extractor import extract_archive, find_jdk_home
from checksum_verifier import ChecksumVerifier, resolve_expected_digest
from errors import CacheError, CatalogUnavailable
from java_version import JavaVersion
from release_catalog import USER_AGENT, ResolvedRelease, cache_name

logger = logging.getLogger(__name__)

MARKER_NAME = ".jpre.json"

ProgressCallback = Callable[[int, int], Awaitable[None]]


# ──────────────────────────────────────────────
#  CacheEntry
# ──────────────────────────────────────────────

@dataclass
class CacheEntry:
    """An extracted, ready-to-use JDK home."""

    distribution: str
    version: str
    path: Path
    installed_at: str = ""
    download_url: str = ""

    @property
    def java_version(self) -> Optional[JavaVersion]:
        return JavaVersion.try_parse(self.version)

    @property
    def major(self) -> Optional[int]:
        parsed = self.java_version
        return parsed.major if parsed else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "distribution": self.distribution,
            "version": self.version,
            "installed_at": self.installed_at,
            "download_url": self.download_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: Path) -> "CacheEntry":
        return cls(
            distribution=data.get("distribution", ""),
            version=data.get("version", ""),
            path=path,
            installed_at=data.get("installed_at", ""),
            download_url=data.get("download_url", ""),
        )


# ──────────────────────────────────────────────
#  CacheStore
# ──────────────────────────────────────────────

class CacheStore:
    """
    Maps (distribution, exact version) → extracted JDK home.

    Args:
        cache_root: Root cache directory (``jdks/`` and ``downloads/`` live here)
        chunk_size: Download chunk size in bytes
    """

    def __init__(self, cache_root: str | Path, chunk_size: int = 64 * 1024) -> None:
        self.cache_root = Path(cache_root).absolute()
        self.jdks_dir = self.cache_root / "jdks"
        self.downloads_dir = self.cache_root / "downloads"
        self.chunk_size = chunk_size
        self.jdks_dir.mkdir(parents=True, exist_ok=True)

    # ================================================================
    #  LOOKUP
    # ================================================================

    def path_for(self, distribution: str, version: str) -> Path:
        return self.jdks_dir / cache_name(distribution, version)

    def entry_path(self, release: ResolvedRelease) -> Path:
        """Final location for *release*, whether or not it exists yet."""
        return self.jdks_dir / release.cache_name

    def lookup(self, release: ResolvedRelease) -> Optional[Path]:
        path = self.entry_path(release)
        return path if (path / MARKER_NAME).is_file() else None

    def read_entry(self, home: Path) -> Optional[CacheEntry]:
        """Read the marker of a JDK home; None if it is not a cache entry."""
        marker = Path(home) / MARKER_NAME
        if not marker.is_file():
            return None
        try:
            data = json.loads(marker.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Unreadable cache marker %s: %s", marker, exc)
            return None
        return CacheEntry.from_dict(data, Path(home))

    def list_entries(self) -> List[CacheEntry]:
        """All complete entries, sorted by distribution then version."""
        entries: List[CacheEntry] = []
        if not self.jdks_dir.exists():
            return entries
        for child in self.jdks_dir.iterdir():
            if child.name.startswith(".") or not child.is_dir():
                continue
            entry = self.read_entry(child)
            if entry is not None:
                entries.append(entry)

        def _key(e: CacheEntry):
            parsed = e.java_version
            return (e.distribution, parsed is not None, parsed or e.version)

        return sorted(entries, key=_key)

    def find_installed(
        self,
        distribution: Optional[str] = None,
        major: Optional[int] = None,
    ) -> List[CacheEntry]:
        """Installed entries filtered by distribution and/or major, newest last."""
        return [
            e for e in self.list_entries()
            if (distribution is None or e.distribution == distribution)
            and (major is None or e.major == major)
        ]

    # ================================================================
    #  ENSURE
    # ================================================================

    async def ensure(
        self,
        release: ResolvedRelease,
        session: aiohttp.ClientSession,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Path:
        """
        Return the home of *release*, downloading and extracting it if needed.

        Idempotent: an existing entry is returned without network access.

        Raises:
            CatalogUnavailable: download failed at transport / HTTP level
            ChecksumMismatch:   digest mismatch or no digest available
            ExtractError:       corrupt or unsafe archive
            CacheError:         promotion into the cache failed
        """
        existing = self.lookup(release)
        if existing is not None:
            logger.info("Cache hit: %s %s at %s", release.distribution, release.version, existing)
            return existing

        expected = await resolve_expected_digest(session, release)
        archive = await self._download(release, expected, session, progress_callback)
        try:
            return self._install(release, archive)
        finally:
            archive.unlink(missing_ok=True)

    async def _download(
        self,
        release: ResolvedRelease,
        expected_digest: str,
        session: aiohttp.ClientSession,
        progress_callback: Optional[ProgressCallback],
    ) -> Path:
        """Stream the archive to a temp file, verifying as it arrives."""
        self.downloads_dir.mkdir(parents=True, exist_ok=True)
        self._check_free_space(release)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{release.cache_name}-", suffix=".part", dir=self.downloads_dir,
        )
        tmp_path = Path(tmp_name)
        verifier = ChecksumVerifier(expected_digest, source=release.download_url)
        url = release.download_url

        logger.info("Downloading %s %s: %s", release.distribution, release.version, url)
        downloaded = 0
        start_time = time.time()
        try:
            with os.fdopen(fd, "wb") as fh:
                try:
                    async with session.get(
                        url, headers={"User-Agent": USER_AGENT},
                        timeout=aiohttp.ClientTimeout(total=None, sock_connect=30, sock_read=60),
                    ) as resp:
                        if resp.status != 200:
                            raise CatalogUnavailable(
                                f"Download failed: HTTP {resp.status} for {url}",
                                stage="download", url=url, status=resp.status,
                            )
                        total = resp.content_length or release.size
                        async for chunk in resp.content.iter_chunked(self.chunk_size):
                            fh.write(chunk)
                            verifier.update(chunk)
                            downloaded += len(chunk)
                            if progress_callback:
                                await progress_callback(downloaded, total)
                except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                    raise CatalogUnavailable(
                        f"Download of {url} failed: {exc}", stage="download", url=url,
                    ) from exc

            verifier.verify()
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        elapsed = time.time() - start_time
        logger.info(
            "Download complete: %s (%.1f MB, %.1f MB/s)",
            release.filename or url,
            downloaded / (1024 * 1024),
            (downloaded / (1024 * 1024)) / max(elapsed, 0.1),
        )
        return tmp_path

    def _check_free_space(self, release: ResolvedRelease) -> None:
        # Archive plus extracted tree needs roughly three times the archive size
        if not release.size:
            return
        try:
            free = psutil.disk_usage(str(self.cache_root)).free
        except OSError as exc:
            logger.debug("Could not read free space for %s: %s", self.cache_root, exc)
            return
        if free < release.size * 3:
            logger.warning(
                "Low disk space in %s: %.1f MB free, %s needs about %.1f MB",
                self.cache_root, free / (1024 * 1024), release.cache_name,
                release.size * 3 / (1024 * 1024),
            )

    def _install(self, release: ResolvedRelease, archive: Path) -> Path:
        """Extract into a staging sibling and promote it with one rename."""
        final = self.entry_path(release)
        staging = Path(tempfile.mkdtemp(prefix=".staging-", dir=self.jdks_dir))
        try:
            extract_archive(archive, release.archive_kind, staging)
            home = find_jdk_home(staging)
            self._write_marker(home, release)
            self._promote(home, final)
        finally:
            shutil.rmtree(staging, ignore_errors=True)
        return final

    @staticmethod
    def _write_marker(home: Path, release: ResolvedRelease) -> None:
        entry = CacheEntry(
            distribution=release.distribution,
            version=release.version,
            path=home,
            installed_at=datetime.now(tz=timezone.utc).isoformat(),
            download_url=release.download_url,
        )
        try:
            (home / MARKER_NAME).write_text(json.dumps(entry.to_dict(), indent=2), encoding="utf-8")
        except OSError as exc:
            raise CacheError(f"Could not write cache marker in {home}: {exc}") from exc

    @staticmethod
    def _promote(home: Path, final: Path, retry: bool = True) -> bool:
        """
        Rename *home* to *final*.  Returns False if another process got there first.

        Entries are always renamed in with their marker, so a directory at
        *final* without one is leftover junk: it is moved aside once and the
        rename retried.
        """
        try:
            os.rename(home, final)
        except OSError as exc:
            lost_race = isinstance(exc, FileExistsError) or exc.errno in (
                errno.EEXIST, errno.ENOTEMPTY,
            )
            # Windows may report the collision as PermissionError
            if (final / MARKER_NAME).is_file():
                logger.info(
                    "Another process installed %s first; using it (%s)",
                    final.name, "lost race" if lost_race else exc,
                )
                return False
            if retry and final.is_dir():
                CacheStore._discard_unmarked(final)
                return CacheStore._promote(home, final, retry=False)
            raise CacheError(
                f"Could not move JDK from {home} to {final}: {exc}", path=str(final),
            ) from exc
        logger.info("Installed %s", final)
        return True

    @staticmethod
    def _discard_unmarked(final: Path) -> None:
        trash = final.parent / f".trash-{final.name}-{os.getpid()}-{time.time_ns()}"
        logger.warning("Replacing incomplete cache entry without marker: %s", final)
        try:
            os.rename(final, trash)
        except FileNotFoundError:
            # Someone else already moved it
            return
        except OSError as exc:
            raise CacheError(
                f"Could not move aside incomplete entry {final}: {exc}", path=str(final),
            ) from exc
        shutil.rmtree(trash, ignore_errors=True)

    # ================================================================
    #  REMOVAL
    # ================================================================

    def remove(self, distribution: str, version: str) -> Path:
        """
        Delete an entry.  It leaves the final namespace atomically (rename to
        a ``.trash-*`` sibling) before its files are removed.
        """
        final = self.path_for(distribution, version)
        if not final.is_dir():
            raise CacheError(
                f"JDK {distribution} {version} is not installed", path=str(final),
            )
        trash = self.jdks_dir / f".trash-{final.name}-{os.getpid()}-{time.time_ns()}"
        try:
            os.rename(final, trash)
        except OSError as exc:
            raise CacheError(f"Could not remove JDK at {final}: {exc}", path=str(final)) from exc
        shutil.rmtree(trash, ignore_errors=True)
        if trash.exists():
            logger.warning("Leftover files after removing %s at %s", final.name, trash)
        logger.info("Removed %s", final)
        return final
