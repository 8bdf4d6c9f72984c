"""
CLI (Command Line Interface).

    canvasterm               start the interactive UI (same as `canvasterm run`)
    canvasterm init          write a config template to ~/.canvasterm/config.toml
    canvasterm sync          fetch everything once and print a summary
    canvasterm status        show what is cached, without touching the network

Note:
- The interactive UI lives in canvasterm/app.py
- Logs go to ~/.canvasterm/canvasterm.log because the UI owns the terminal
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional

from loguru import logger
from rich.console import Console
from rich.table import Table
from rich import box

from canvasterm import __version__
from canvasterm.config import ConfigError, default_config_path, home_dir, load_config, write_default_config
from canvasterm.model import ALL_CATEGORIES
from canvasterm.storage import CacheStore, Snapshot

DEFAULT_INTERVAL = 300.0

console = Console()


def configure_logging(verbose: bool = False, to_stderr: bool = False) -> Path:
    """
    Send loguru output to the log file (and optionally stderr for the
    one-shot commands). Returns the log file path.
    """
    log_path = home_dir() / "canvasterm.log"
    logger.remove()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(log_path, level="DEBUG" if verbose else "INFO", rotation="1 MB", retention=3, enqueue=True)
    except OSError as exc:
        print(f"Logging to file disabled: {exc}", file=sys.stderr)
    if to_stderr:
        logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")
    return log_path


def _fmt(ts) -> str:
    return ts.astimezone().strftime("%Y-%m-%d %H:%M") if ts else "never"


def _status_table(snapshot: Snapshot, title: str) -> Table:
    table = Table(title=title, box=box.SIMPLE)
    table.add_column("Category")
    table.add_column("Records", justify="right")
    table.add_column("Last synced")
    table.add_column("Error")
    for category in ALL_CATEGORIES:
        table.add_row(
            category.label,
            str(len(snapshot.records(category))),
            _fmt(snapshot.synced_at(category)),
            snapshot.error(category) or "",
        )
    return table


def _make_client(args: argparse.Namespace):
    from canvasterm.api import CanvasClient

    config = load_config(args.config)
    return CanvasClient(config.canvas_url, config.api_token, timeout=args.timeout)


def _cmd_init(args: argparse.Namespace) -> int:
    path = Path(args.config) if args.config else default_config_path()
    if path.exists() and not args.force:
        print(f"Config already exists at {path} (use --force to overwrite).")
        return 1
    write_default_config(path)
    print(f"Generated config file at: {path}")
    print("Edit it with your Canvas URL and API token, then run canvasterm.")
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    store = CacheStore(args.cache)
    snapshot = store.load()
    if snapshot.is_empty:
        print(f"No cached data at {store.path}.")
        return 0
    console.print(_status_table(snapshot, f"Cache: {store.path}"))
    return 0


def _cmd_sync(args: argparse.Namespace) -> int:
    from canvasterm.sync import SyncCoordinator

    client = _make_client(args)
    store = CacheStore(args.cache)
    store.load()
    coordinator = SyncCoordinator(store, client)
    with console.status("Syncing..."):
        result = coordinator.run_cycle()
    console.print(_status_table(store.read(), "Sync result"))
    return 0 if result.ok else 1


def _cmd_run(args: argparse.Namespace) -> int:
    from canvasterm.app import App
    from canvasterm.sync import SyncCoordinator

    store = CacheStore(args.cache)
    coordinator = None
    if not args.offline:
        client = _make_client(args)
        coordinator = SyncCoordinator(store, client, interval_seconds=args.interval or None)
    App(store, coordinator).run()
    return 0


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argparse CLI parser with sub-commands.
    """
    parser = argparse.ArgumentParser(prog="canvasterm", description="Terminal client for Canvas LMS")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=str, default=None, help="Config file (default: ~/.canvasterm/config.toml)")
    parser.add_argument("--cache", type=str, default=None, help="Cache file (default: ~/.canvasterm/cache.json)")
    parser.add_argument("--timeout", type=float, default=30.0, help="HTTP timeout in seconds")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command")

    p_run = sub.add_parser("run", help="Start the interactive UI (default)")
    p_run.add_argument("--interval", type=float, default=DEFAULT_INTERVAL, help="Background refresh seconds, 0 = off")
    p_run.add_argument("--offline", action="store_true", help="Only show cached data, never sync")

    p_init = sub.add_parser("init", help="Write a config template")
    p_init.add_argument("--force", action="store_true", help="Overwrite an existing config file")

    sub.add_parser("sync", help="Fetch all data once and print a summary")
    sub.add_parser("status", help="Show cached data without touching the network")

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """
    CLI entry point. Parses args, dispatches to command handlers,
    and exits via SystemExit with a return code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    command = args.command or "run"
    if command == "run" and args.command is None:
        args.interval = DEFAULT_INTERVAL
        args.offline = False

    configure_logging(verbose=args.verbose, to_stderr=command in ("sync", "status"))

    handlers = {
        "init": _cmd_init,
        "status": _cmd_status,
        "sync": _cmd_sync,
        "run": _cmd_run,
    }
    try:
        raise SystemExit(handlers[command](args))
    except ConfigError as exc:
        print(f"Failed to load configuration: {exc}", file=sys.stderr)
        raise SystemExit(2)
