#!/usr/bin/env python3
"""
main.py – jpre command line
===========================
Entry point: argparse sub-commands over the JdkManager engine.

Absolute paths (``use``, ``java-home``, ``default``) go to stdout so a
shell wrapper can consume them; status lines, progress and errors go to
stderr.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from config import JpreConfig, JpreDirs
from errors import JpreError
from jdk_manager import JdkManager, Result

logger = logging.getLogger("jpre")

out = Console(highlight=False)
err = Console(stderr=True, highlight=False)


# ──────────────────────────────────────────────
#  Logging
# ──────────────────────────────────────────────

_LEVELS = [logging.WARNING, logging.INFO, logging.DEBUG]


def setup_logging(verbosity: int, log_dir: Optional[Path]) -> None:
    """stderr at WARNING / INFO / DEBUG by verbosity, plus a log file."""
    level = _LEVELS[min(max(verbosity, 0), len(_LEVELS) - 1)]

    stream = logging.StreamHandler(sys.stderr)
    stream.setLevel(level)
    handlers: List[logging.Handler] = [stream]

    if log_dir is not None:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_dir / "jpre.log", encoding="utf-8")
            file_handler.setLevel(min(level, logging.INFO))
            handlers.append(file_handler)
        except OSError as exc:
            err.print(f"[yellow]Logging to file disabled: {exc}[/]")

    logging.basicConfig(
        level=min(level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


# ──────────────────────────────────────────────
#  Download progress
# ──────────────────────────────────────────────

class DownloadProgress:
    """Async ``(downloaded, total)`` callback rendering a rich progress bar on stderr."""

    def __init__(self, console: Console = err) -> None:
        self._progress = Progress(
            TextColumn("[cyan]Downloading"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            console=console,
            transient=True,
        )
        self._task = None

    async def __call__(self, downloaded: int, total: int) -> None:
        if self._task is None:
            self._progress.start()
            self._task = self._progress.add_task("download", total=total or None)
        self._progress.update(self._task, completed=downloaded, total=total or None)

    def close(self) -> None:
        if self._task is not None:
            self._progress.stop()
            self._task = None


# ──────────────────────────────────────────────
#  CLI
# ──────────────────────────────────────────────

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="jpre",
        description="☕ jpre – per-session JDK switching",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-v, -vv)")
    p.add_argument("--config", type=Path, default=None, help="Path to config.json")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("use", help="Activate a JDK in this session")
    s.add_argument("major", type=int)
    s.add_argument("--distribution", "-d", default=None)

    s = sub.add_parser("default", help="Show or set the default JDK")
    s.add_argument("major", type=int, nargs="?")
    s.add_argument("--distribution", "-d", default=None)

    sub.add_parser("java-home", help="Print the session's JAVA_HOME link")
    sub.add_parser("current", help="Print the active exact version")
    sub.add_parser("list", help="List installed JDKs")

    s = sub.add_parser("remove", help="Remove an installed JDK")
    s.add_argument("distribution")
    s.add_argument("version")

    s = sub.add_parser("update", help="Install newer releases of installed JDKs")
    s.add_argument("major", type=int, nargs="?")
    s.add_argument("--check", action="store_true", help="Only report available updates")
    s.add_argument("--force", action="store_true", help="Reinstall even if up to date")

    sub.add_parser("distributions", help="List distributions in the catalog")

    s = sub.add_parser("versions", help="List versions a distribution publishes")
    s.add_argument("--distribution", "-d", default=None)

    s = sub.add_parser("set-distributions", help="Set preferred distributions, in order")
    s.add_argument("names", nargs="+")

    sub.add_parser("context-id", help="Print this session's context id")
    return p.parse_args(argv)


# ──────────────────────────────────────────────
#  Commands
# ──────────────────────────────────────────────

def cmd_use(mgr: JdkManager, args: argparse.Namespace) -> Result:
    res = mgr.run(mgr.use, args.distribution, args.major)
    if res.success:
        err.print(f"[green]✓[/] Java {args.major} active: {res.value}")
        print(res.value)
    return res


def cmd_default(mgr: JdkManager, args: argparse.Namespace) -> Result:
    if args.major is None:
        default = mgr.config.default_jdk
        if default is None:
            err.print("[yellow]No default JDK configured[/]")
            return Result.ok("no default")
        print(default.describe())
        return Result.ok(default.describe())

    res = mgr.run(mgr.set_default, args.distribution, args.major)
    if res.success:
        err.print(f"[green]✓[/] Default JDK: {mgr.config.default_jdk.describe()}")
        print(res.value)
    return res


def cmd_java_home(mgr: JdkManager, args: argparse.Namespace) -> Result:
    res = mgr.run(mgr.java_home)
    if res.success:
        print(res.value)
    return res


def cmd_current(mgr: JdkManager, args: argparse.Namespace) -> Result:
    version = mgr.current_version()
    print(version or "<unknown>")
    return Result.ok(version or "<unknown>")


def cmd_list(mgr: JdkManager, args: argparse.Namespace) -> Result:
    entries = mgr.list_installed()
    if not entries:
        err.print("[yellow]No JDKs installed[/]")
        return Result.ok("empty")

    active = mgr.resolve_active()
    t = Table(title="Installed JDKs")
    t.add_column("", width=1)
    t.add_column("Distribution", style="cyan")
    t.add_column("Version", style="white")
    t.add_column("Installed", style="dim")
    t.add_column("Path", style="dim")
    for e in entries:
        marker = "[green]*[/]" if active is not None and Path(active) == e.path else ""
        t.add_row(marker, e.distribution, e.version, e.installed_at[:19], str(e.path))
    out.print(t)
    return Result.ok(f"{len(entries)} installed")


def cmd_remove(mgr: JdkManager, args: argparse.Namespace) -> Result:
    try:
        path = mgr.remove(args.distribution, args.version)
    except JpreError as exc:
        return Result.fail(exc.message, error=exc.kind, stage=exc.stage)
    err.print(f"[green]✓[/] Removed {path}")
    return Result.ok(f"removed {path}")


def cmd_update(mgr: JdkManager, args: argparse.Namespace) -> Result:
    res = mgr.run(mgr.update, args.major, check_only=args.check, force=args.force)
    if not res.success:
        return res
    statuses = res.value or []
    if not statuses:
        err.print("[yellow]No JDKs installed[/]")
        return res

    t = Table(title="Update check" if args.check else "Updates")
    t.add_column("Distribution", style="cyan")
    t.add_column("Installed")
    t.add_column("Latest")
    t.add_column("Status")
    for s in statuses:
        if s.error:
            state = f"[red]{escape(s.error)}[/]"
        elif s.installed_path is not None:
            state = "[green]installed[/]"
        elif s.available:
            state = "[yellow]update available[/]"
        else:
            state = "up to date"
        t.add_row(s.entry.distribution, s.entry.version, s.latest or "?", state)
    out.print(t)
    return res


def cmd_distributions(mgr: JdkManager, args: argparse.Namespace) -> Result:
    res = mgr.run(mgr.list_distributions)
    if not res.success:
        return res
    preferred = set(mgr.config.distributions)
    t = Table(title="Distributions")
    t.add_column("", width=1)
    t.add_column("Name", style="cyan")
    t.add_column("Synonyms", style="dim")
    for d in res.value:
        t.add_row(
            "[green]*[/]" if d.api_name in preferred else "",
            d.api_name,
            ", ".join(s for s in d.synonyms if s != d.api_name),
        )
    out.print(t)
    return res


def cmd_versions(mgr: JdkManager, args: argparse.Namespace) -> Result:
    res = mgr.run(mgr.list_versions, args.distribution)
    if res.success:
        for version in res.value:
            print(version)
    return res


def cmd_set_distributions(mgr: JdkManager, args: argparse.Namespace) -> Result:
    res = mgr.run(mgr.set_distributions, args.names)
    if res.success:
        err.print(f"[green]✓[/] Preferred distributions: {', '.join(res.value)}")
    return res


def cmd_context_id(mgr: JdkManager, args: argparse.Namespace) -> Result:
    print(mgr.context_id)
    return Result.ok(mgr.context_id)


COMMANDS: Dict[str, Callable[[JdkManager, argparse.Namespace], Result]] = {
    "use": cmd_use,
    "default": cmd_default,
    "java-home": cmd_java_home,
    "current": cmd_current,
    "list": cmd_list,
    "remove": cmd_remove,
    "update": cmd_update,
    "distributions": cmd_distributions,
    "versions": cmd_versions,
    "set-distributions": cmd_set_distributions,
    "context-id": cmd_context_id,
}


# ──────────────────────────────────────────────
#  Entry Point
# ──────────────────────────────────────────────

def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    dirs = JpreDirs.from_environment(config_path=args.config)
    setup_logging(args.verbose, dirs.log_dir)
    logger.debug("Command %s, cache=%s, sessions=%s", args.command, dirs.cache_root, dirs.session_root)

    progress = DownloadProgress()
    try:
        config = JpreConfig.load(dirs.config_path)
        mgr = JdkManager(config, dirs, progress_callback=progress)
        res = COMMANDS[args.command](mgr, args)
    except JpreError as exc:
        res = Result.fail(exc.message, error=exc.kind, stage=exc.stage)
    except Exception as exc:
        logger.debug("Unexpected failure", exc_info=True)
        err.print(f"[bold red]Unexpected error:[/] {escape(str(exc))}")
        return 2
    finally:
        progress.close()

    if not res.success:
        stage = res.details.get("stage", "unknown")
        err.print(f"[bold red]Error \\[{escape(stage)}]:[/] {escape(res.message)}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
