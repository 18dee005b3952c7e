"""
archive_extractor.py
====================
Extraction of downloaded JDK archives into a staging directory.

Supported kinds (chosen from catalog metadata, never sniffed):
  - tar.gz  – Linux / macOS builds
  - zip     – Windows builds (and a few vendors on every platform)

Both extractors:
  - reject entries whose path (or link target) escapes the destination
  - preserve permission bits so ``bin/java`` stays executable
  - discard the whole destination directory on any failure
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tarfile
import zipfile
import zlib
from enum import Enum
from pathlib import Path
from typing import Dict, List

from errors import ExtractError

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
#  Path safety
# ──────────────────────────────────────────────

def _is_within(base: str, candidate: str) -> bool:
    base = os.path.normpath(base)
    candidate = os.path.normpath(candidate)
    try:
        return os.path.commonpath([base, candidate]) == base
    except ValueError:
        # Different drives on Windows
        return False


def _check_entry_name(destination: Path, name: str) -> str:
    """Return the normalized target path for *name* or raise ``ExtractError``."""
    cleaned = name.replace("\\", "/")
    drive, _ = os.path.splitdrive(cleaned)
    if cleaned.startswith("/") or drive:
        raise ExtractError(f"Refusing absolute archive entry: {name!r}", entry=name)
    target = os.path.join(str(destination), *cleaned.split("/"))
    if not _is_within(str(destination), target):
        raise ExtractError(
            f"Refusing archive entry outside destination: {name!r}",
            entry=name,
        )
    return target


def _check_link_target(destination: Path, entry_path: str, link: str, name: str) -> None:
    if os.path.isabs(link) or link.replace("\\", "/").startswith("/"):
        raise ExtractError(
            f"Refusing absolute link target in archive: {name!r} -> {link!r}",
            entry=name,
        )
    resolved = os.path.join(os.path.dirname(entry_path), link)
    if not _is_within(str(destination), resolved):
        raise ExtractError(
            f"Refusing link outside destination: {name!r} -> {link!r}",
            entry=name,
        )


def _check_on_disk(real_destination: str, target: str, name: str) -> None:
    """
    Resolve *target* through the links already written and make sure it
    still lands inside the destination.
    """
    if not _is_within(real_destination, os.path.realpath(target)):
        raise ExtractError(
            f"Refusing archive entry routed outside destination by a link: {name!r}",
            entry=name,
        )


# ──────────────────────────────────────────────
#  Extractors
# ──────────────────────────────────────────────

class TarGzExtractor:
    """gzip-compressed tarball extractor."""

    def extract(self, archive_path: Path, destination: Path) -> None:
        with tarfile.open(archive_path, "r:gz") as tar:
            members = tar.getmembers()
            for member in members:
                target = _check_entry_name(destination, member.name)
                if member.issym():
                    _check_link_target(destination, target, member.linkname, member.name)
                elif member.islnk():
                    # Hard link targets are relative to the archive root
                    _check_entry_name(destination, member.linkname)

            logger.debug("Extracting %d tar entries into %s", len(members), destination)
            tar.extractall(destination, members=members, filter="data")


class ZipExtractor:
    """zip extractor that restores unix permission bits and symlinks."""

    def extract(self, archive_path: Path, destination: Path) -> None:
        with zipfile.ZipFile(archive_path, "r") as zf:
            infos = zf.infolist()
            planned: List[tuple] = []
            for info in infos:
                target = _check_entry_name(destination, info.filename)
                mode = info.external_attr >> 16
                if stat.S_ISLNK(mode):
                    link = zf.read(info).decode("utf-8")
                    _check_link_target(destination, target, link, info.filename)
                planned.append((info, target, mode))

            logger.debug("Extracting %d zip entries into %s", len(planned), destination)
            real_destination = os.path.realpath(destination)
            for info, target, mode in planned:
                if info.is_dir():
                    _check_on_disk(real_destination, target, info.filename)
                    os.makedirs(target, exist_ok=True)
                    continue
                parent = os.path.dirname(target)
                _check_on_disk(real_destination, parent, info.filename)
                os.makedirs(parent, exist_ok=True)
                if stat.S_ISLNK(mode):
                    link = zf.read(info).decode("utf-8")
                    _check_on_disk(
                        real_destination,
                        os.path.join(os.path.realpath(parent), link),
                        info.filename,
                    )
                    os.symlink(link, target)
                    continue
                _check_on_disk(real_destination, target, info.filename)
                with zf.open(info) as src, open(target, "wb") as dst:
                    shutil.copyfileobj(src, dst)
                perms = stat.S_IMODE(mode)
                if perms:
                    os.chmod(target, perms)


# ──────────────────────────────────────────────
#  Archive kinds
# ──────────────────────────────────────────────

class ArchiveKind(str, Enum):
    """Archive formats the catalog can hand us."""

    TAR_GZ = "tar.gz"
    ZIP = "zip"

    @classmethod
    def from_catalog(cls, value: str) -> "ArchiveKind":
        """Map a catalog ``archive_type`` string to a kind."""
        key = (value or "").strip().lower()
        kind = _CATALOG_ALIASES.get(key)
        if kind is None:
            raise ExtractError(f"Unsupported archive type: {value!r}", archive_type=value)
        return kind

    @classmethod
    def is_supported(cls, value: str) -> bool:
        return (value or "").strip().lower() in _CATALOG_ALIASES

    def extractor(self):
        return _EXTRACTORS[self]


_CATALOG_ALIASES: Dict[str, ArchiveKind] = {
    "tar.gz": ArchiveKind.TAR_GZ,
    "tgz": ArchiveKind.TAR_GZ,
    "zip": ArchiveKind.ZIP,
}

_EXTRACTORS = {
    ArchiveKind.TAR_GZ: TarGzExtractor(),
    ArchiveKind.ZIP: ZipExtractor(),
}


# ──────────────────────────────────────────────
#  Public API
# ──────────────────────────────────────────────

def extract_archive(archive_path: Path, kind: ArchiveKind, destination: Path) -> None:
    """
    Extract *archive_path* into the fresh directory *destination*.

    On any failure the destination is removed entirely and
    ``ExtractError`` is raised.
    """
    archive_path = Path(archive_path)
    destination = Path(destination)
    destination.mkdir(parents=True, exist_ok=True)

    logger.info("Extracting %s (%s) → %s", archive_path.name, kind.value, destination)
    try:
        kind.extractor().extract(archive_path, destination)
    except ExtractError:
        shutil.rmtree(destination, ignore_errors=True)
        raise
    except (tarfile.TarError, zipfile.BadZipFile, EOFError, zlib.error, OSError,
            UnicodeDecodeError) as exc:
        shutil.rmtree(destination, ignore_errors=True)
        raise ExtractError(
            f"Could not extract {archive_path.name}: {exc}",
            archive=str(archive_path),
        ) from exc


def java_binary(home: Path) -> Path:
    """Path of the ``java`` launcher inside a JDK home."""
    exe = home / "bin" / "java.exe"
    if exe.is_file():
        return exe
    return home / "bin" / "java"


def find_jdk_home(directory: Path) -> Path:
    """
    Locate the JDK home inside an extracted tree.

    Adoptium-style archives wrap everything in ``jdk-17.0.9+9/``; macOS
    bundles add ``Contents/Home``.  Dot entries are ignored.
    """
    directory = Path(directory)
    entries = [p for p in directory.iterdir() if not p.name.startswith(".")]
    base = entries[0] if len(entries) == 1 and entries[0].is_dir() else directory

    for candidate in (base / "Contents" / "Home", base):
        if java_binary(candidate).is_file():
            return candidate

    raise ExtractError(
        f"Could not find a JDK home (bin/java) in {directory}",
        path=str(directory),
    )
