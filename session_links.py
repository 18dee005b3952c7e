"""
session_links.py
================
Per-session "active JDK" indirection.

Each shell session (identified by a context id) owns exactly one symlink
``<session_root>/<context_id>`` pointing at a cache entry.  Shells put
``<link>/bin`` on PATH once; switching JDKs only repoints the link.

Different contexts never share a link path, so no locking is needed.
Stale links (target removed from the cache) resolve to ``None``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from context_id import sanitize_context_id
from errors import ActivationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionContext:
    """One shell session and the link it owns."""

    context_id: str
    link_path: Path


class SessionLinks:
    """
    Owns every ``ActiveSymlink`` under *session_root*.

    Only this class reads or writes the links.
    """

    def __init__(self, session_root: str | Path) -> None:
        self.session_root = Path(session_root).absolute()

    def context_for(self, context_id: str) -> SessionContext:
        """Build the SessionContext for *context_id*."""
        safe_id = sanitize_context_id(context_id)
        return SessionContext(context_id=safe_id, link_path=self.session_root / safe_id)

    def activate(self, context: SessionContext, home: Path) -> None:
        """
        Point the context's link at *home*, replacing any previous link.

        Raises:
            ActivationError: the link could not be created or replaced
        """
        link = context.link_path
        # Relative targets would resolve against the session directory
        home = Path(home).absolute()
        try:
            self.session_root.mkdir(parents=True, exist_ok=True)

            if link.is_symlink() or link.is_file():
                link.unlink()
            elif link.exists():
                raise ActivationError(
                    f"Refusing to replace real directory at {link}",
                    path=str(link),
                    context=context.context_id,
                )

            os.symlink(str(home), str(link), target_is_directory=True)
        except OSError as exc:
            raise ActivationError(
                f"Could not link {link} -> {home}: {exc}",
                path=str(link),
                context=context.context_id,
            ) from exc

        logger.info("Context %s now uses %s", context.context_id, home)

    def resolve_active(self, context: SessionContext) -> Optional[Path]:
        """Target of the context's link, or None if absent or dangling."""
        link = context.link_path
        if not link.is_symlink():
            return None
        try:
            target = Path(os.readlink(link))
        except OSError as exc:
            logger.debug("Could not read link %s: %s", link, exc)
            return None
        if not target.is_absolute():
            target = link.parent / target
        if not target.is_dir():
            logger.debug("Stale link %s -> %s", link, target)
            return None
        return target

    def clear(self, context: SessionContext) -> None:
        """Remove the context's link.  A missing link is not an error."""
        link = context.link_path
        if not link.is_symlink():
            if link.exists():
                raise ActivationError(
                    f"Refusing to remove non-link at {link}", path=str(link),
                )
            return
        try:
            link.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise ActivationError(f"Could not remove link {link}: {exc}", path=str(link)) from exc
        logger.debug("Cleared link for context %s", context.context_id)
