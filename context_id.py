"""
context_id.py
=============
Discovery of the session context id.

The shell wrapper exports ``JPRE_CONTEXT_ID`` once per terminal; without
it the parent process id (normally the interactive shell) is used.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Mapping, Optional

import psutil

from errors import ActivationError

logger = logging.getLogger(__name__)

ENV_VAR = "JPRE_CONTEXT_ID"

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_context_id(value: str) -> str:
    """
    Make *value* usable as a single path component.

    Raises:
        ActivationError: nothing usable is left
    """
    cleaned = _UNSAFE_RE.sub("_", (value or "").strip())
    if cleaned in ("", ".", ".."):
        raise ActivationError(f"Invalid context id: {value!r}", context=value)
    return cleaned


def discover_context_id(environ: Optional[Mapping[str, str]] = None) -> str:
    """Context id from the environment, else the parent pid."""
    env = os.environ if environ is None else environ
    explicit = env.get(ENV_VAR, "").strip()
    if explicit:
        return sanitize_context_id(explicit)

    proc = psutil.Process()
    ppid = proc.ppid()
    try:
        logger.debug("Using parent process %d (%s) as context", ppid, psutil.Process(ppid).name())
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        logger.debug("Using parent pid %d as context", ppid)
    return str(ppid)
