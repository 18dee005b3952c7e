"""
java_version.py
===============
Parsing and ordering of exact Java version strings.

Accepts both numbering schemes seen in release catalogs:
  - JEP 223 / JEP 322   – ``17.0.9+9``, ``21.0.1+12-LTS``, ``22-ea+5``
  - Legacy (Java <= 8)  – ``1.8.0_392-b08``

Ordering is semantic: numeric components first, then GA above any
pre-release, then build number, then the optional identifier compared
lexically as a final tiebreak.  Every legacy version sorts below every
new-scheme version.
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass
from typing import Optional, Tuple

_LEGACY_RE = re.compile(
    r"^1\.(?P<minor>\d+)\.(?P<patch>\d+)(?:_(?P<update>\d+))?(?:-b(?P<build>\d+))?$"
)

_NEW_RE = re.compile(
    r"^(?P<vnum>\d+(?:\.\d+)*)"
    r"(?:-(?P<pre>[A-Za-z0-9]+))?"
    r"(?:\+(?P<build>\d+)?)?"
    r"(?:-(?P<opt>[-A-Za-z0-9.]+))?$"
)


def _strip_trailing_zeros(numbers: Tuple[int, ...]) -> Tuple[int, ...]:
    end = len(numbers)
    while end > 1 and numbers[end - 1] == 0:
        end -= 1
    return numbers[:end]


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class JavaVersion:
    """A parsed exact Java version."""

    text: str
    numbers: Tuple[int, ...]
    pre: Optional[str] = None
    build: Optional[int] = None
    opt: Optional[str] = None
    legacy: bool = False

    # ── Parsing ────────────────────────────────

    @classmethod
    def parse(cls, text: str) -> "JavaVersion":
        """
        Parse a version string.

        Raises:
            ValueError: if the text matches neither scheme
        """
        raw = (text or "").strip()

        match = _LEGACY_RE.match(raw)
        if match and int(match.group("minor")) <= 8:
            return cls(
                text=raw,
                numbers=(
                    int(match.group("minor")),
                    int(match.group("patch")),
                    int(match.group("update") or 0),
                ),
                build=int(match.group("build")) if match.group("build") else None,
                legacy=True,
            )

        match = _NEW_RE.match(raw)
        if not match:
            raise ValueError(f"Not a Java version: {text!r}")

        numbers = tuple(int(p) for p in match.group("vnum").split("."))
        if numbers[0] == 0:
            raise ValueError(f"Java feature version cannot be 0: {text!r}")

        build = match.group("build")
        return cls(
            text=raw,
            numbers=numbers,
            pre=match.group("pre"),
            build=int(build) if build is not None else None,
            opt=match.group("opt"),
        )

    @classmethod
    def try_parse(cls, text: str) -> Optional["JavaVersion"]:
        try:
            return cls.parse(text)
        except ValueError:
            return None

    # ── Accessors ──────────────────────────────

    @property
    def major(self) -> int:
        """Feature release number (``1.8.0_392`` → 8)."""
        return self.numbers[0]

    @property
    def is_ga(self) -> bool:
        return self.pre is None

    # ── Ordering ───────────────────────────────

    def sort_key(self) -> tuple:
        if self.pre is None:
            pre_key: tuple = (1,)
        elif self.pre.isdigit():
            pre_key = (0, 0, int(self.pre), "")
        else:
            pre_key = (0, 1, 0, self.pre)
        return (
            0 if self.legacy else 1,
            _strip_trailing_zeros(self.numbers),
            pre_key,
            -1 if self.build is None else self.build,
            self.opt or "",
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, JavaVersion):
            return NotImplemented
        return self.sort_key() == other.sort_key()

    def __lt__(self, other: "JavaVersion") -> bool:
        if not isinstance(other, JavaVersion):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def __hash__(self) -> int:
        return hash(self.sort_key())

    def __str__(self) -> str:
        return self.text
