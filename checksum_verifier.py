"""
checksum_verifier.py
====================
SHA-256 integrity checks for downloaded JDK archives.

  - ``ChecksumVerifier``        – incremental digest fed chunk by chunk
                                  while the archive streams to disk
  - ``verify_bytes``            – one-shot check over an in-memory blob
  - ``resolve_expected_digest`` – inline digest from the catalog, or the
                                  companion ``.sha256`` resource when the
                                  catalog entry has none
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import re
from typing import TYPE_CHECKING, List, Optional

import aiohttp

from errors import CatalogUnavailable, ChecksumMismatch

if TYPE_CHECKING:
    from release_catalog import ResolvedRelease

logger = logging.getLogger(__name__)

_SHA256_RE = re.compile(r"^[0-9a-fA-F]{64}$")

# Suffixes tried against the download URL when the catalog gives no checksum
_COMPANION_SUFFIXES = (".sha256", ".sha256.text", ".sha256.txt")


def normalize_digest(digest: str) -> str:
    return (digest or "").strip().lower()


def is_sha256(digest: str) -> bool:
    return bool(_SHA256_RE.match(normalize_digest(digest)))


class ChecksumVerifier:
    """Running SHA-256 over a byte stream, compared against an expected digest."""

    def __init__(self, expected: str, source: str = "") -> None:
        expected = normalize_digest(expected)
        if not is_sha256(expected):
            raise ChecksumMismatch(
                f"Expected digest for {source or 'download'} is not a SHA-256 value: {expected!r}",
                source=source,
            )
        self.expected = expected
        self.source = source
        self._hash = hashlib.sha256()
        self.bytes_seen = 0

    def update(self, chunk: bytes) -> None:
        self._hash.update(chunk)
        self.bytes_seen += len(chunk)

    def hexdigest(self) -> str:
        return self._hash.hexdigest()

    def verify(self) -> None:
        """Raise ``ChecksumMismatch`` unless the digest matches."""
        actual = self.hexdigest()
        if not hmac.compare_digest(actual, self.expected):
            raise ChecksumMismatch(
                f"Checksum failed for {self.source or 'download'}: "
                f"expected {self.expected}, got {actual}",
                source=self.source,
                expected=self.expected,
                actual=actual,
            )
        logger.debug("Checksum OK for %s (%d bytes)", self.source, self.bytes_seen)


def verify_bytes(data: bytes, expected: str, source: str = "") -> None:
    """Verify *data* against *expected* in one go."""
    verifier = ChecksumVerifier(expected, source=source)
    verifier.update(data)
    verifier.verify()


def parse_checksum_file(text: str) -> Optional[str]:
    """
    Extract a SHA-256 digest from a checksum resource.

    Accepts a bare digest or ``sha256sum`` output (``<digest>  <file>``).
    """
    for token in (text or "").split():
        if is_sha256(token):
            return normalize_digest(token)
    return None


async def resolve_expected_digest(
    session: aiohttp.ClientSession,
    release: "ResolvedRelease",
    timeout: float = 30,
) -> str:
    """
    Return the expected SHA-256 for *release*.

    Uses the inline catalog digest when present; otherwise fetches the
    companion checksum resource (``checksum_url``, then ``<url>.sha256``,
    ``<url>.sha256.text`` and ``<url>.sha256.txt``).

    Raises:
        CatalogUnavailable: every companion source failed at transport level
        ChecksumMismatch:   no source produced a usable digest
    """
    if release.checksum and is_sha256(release.checksum):
        return normalize_digest(release.checksum)

    candidates: List[str] = []
    if release.checksum_url:
        candidates.append(release.checksum_url)
    candidates.extend(release.download_url + s for s in _COMPANION_SUFFIXES)

    transport_errors: List[str] = []
    for url in candidates:
        logger.info("Fetching companion checksum: %s", url)
        try:
            async with session.get(
                url, timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                if resp.status != 200:
                    logger.debug("Checksum source %s returned %d", url, resp.status)
                    continue
                text = await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Checksum source %s unreachable: %s", url, exc)
            transport_errors.append(f"{url}: {exc}")
            continue

        digest = parse_checksum_file(text)
        if digest:
            return digest
        logger.debug("No SHA-256 digest found in %s", url)

    if transport_errors and len(transport_errors) == len(candidates):
        raise CatalogUnavailable(
            f"Could not reach any checksum source for {release.download_url}",
            stage="verify",
            errors=transport_errors,
        )
    raise ChecksumMismatch(
        f"No SHA-256 checksum available for {release.download_url}; refusing to install",
        source=release.download_url,
    )
