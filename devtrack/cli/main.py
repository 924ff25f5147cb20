"""devtrack command line.

    devtrack run            start the console headless (notifications on stdout)
    devtrack sessions       list catalogued sessions and whether their host is alive
    devtrack snapshot       show (or --clear) the saved reattach snapshot
    devtrack kill-hosts     kill orphaned (or --all) devtrack host sessions
    devtrack config         validate the config and list projects
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from devtrack.config.loader import load_config
from devtrack.config.schema import DevtrackConfig
from devtrack.core.errors import ConfigError, DevtrackError
from devtrack.core.events import Notification, NotificationType
from devtrack.core.task_registry import TaskRegistry
from devtrack.logging_config import get_logger, setup_logging
from devtrack.paths import SESSION_CATALOG_FILENAME, resolve_config_path
from devtrack.runtime import ConsoleRuntime
from devtrack.sessions.catalog import SessionCatalog
from devtrack.sessions.models import SessionKind
from devtrack.sessions.multiplexer import SessionMultiplexer
from devtrack.sessions.tmux import TmuxHost
from devtrack.tui.snapshot_store import SnapshotStore
from devtrack.utils import short_id

logger = get_logger(__name__)

console = Console()

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2

UI_TICK_S = 0.03

_NOTIFICATION_STYLES = {
    NotificationType.INFO: "cyan",
    NotificationType.SUCCESS: "green",
    NotificationType.WARNING: "yellow",
    NotificationType.ERROR: "red",
}


def _print_notification(notification: Notification) -> None:
    style = _NOTIFICATION_STYLES[notification.type]
    console.print(f"[{style}]{notification.title}[/{style}] {notification.message}")


def _multiplexer(config: DevtrackConfig, tasks: TaskRegistry) -> SessionMultiplexer:
    return SessionMultiplexer(
        config.terminal,
        TmuxHost(config.terminal.tmux_binary),
        tasks,
        SessionCatalog(config.state_dir / SESSION_CATALOG_FILENAME),
    )


async def _cmd_run(config: DevtrackConfig, config_path: Path, args: argparse.Namespace) -> int:
    runtime = ConsoleRuntime(config, config_path)
    runtime.coordinator.subscribe_notifications(_print_notification)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, runtime.shutdown_event.set)

    snapshot = await runtime.start(restore=not args.no_restore)
    if snapshot is not None:
        console.print(f"Reattached to view [bold]{runtime.nav.current_view.value}[/bold]")
    flags = runtime.state.flags()
    console.print(f"devtrack running with {len(config.projects)} projects (git loading: {flags.git_loading})")

    deadline = loop.time() + args.duration if args.duration else None
    try:
        while not runtime.shutdown_event.is_set():
            runtime.tick()
            if deadline is not None and loop.time() >= deadline:
                break
            try:
                await asyncio.wait_for(runtime.shutdown_event.wait(), timeout=UI_TICK_S)
            except asyncio.TimeoutError:
                continue
    finally:
        if args.stop_sessions:
            await runtime.shutdown(stop_sessions=True)
        else:
            await runtime.detach()
            console.print("Detached; hosted sessions keep running")
    return EXIT_OK


async def _cmd_sessions(config: DevtrackConfig, args: argparse.Namespace) -> int:
    tasks = TaskRegistry()
    multiplexer = _multiplexer(config, tasks)
    kind = SessionKind(args.kind) if args.kind else None
    try:
        alive = await multiplexer.discover_hosts()
    except DevtrackError as e:
        console.print(f"[yellow]Cannot query host sessions:[/yellow] {e}")
        alive = set()

    table = Table(title="Sessions")
    for column in ("ID", "Kind", "Project", "Name", "State", "Host"):
        table.add_column(column)
    for session in multiplexer.list_sessions(kind):
        table.add_row(
            short_id(session.id),
            session.kind.value,
            session.project_id,
            session.display_name,
            session.state.value,
            "[green]alive[/green]" if session.id in alive else "[dim]gone[/dim]",
        )
    console.print(table)
    await tasks.shutdown()
    return EXIT_OK


def _cmd_snapshot(config: DevtrackConfig, args: argparse.Namespace) -> int:
    store = SnapshotStore.in_state_dir(config.state_dir)
    if args.clear:
        store.clear()
        console.print(f"Removed {store.path}")
        return EXIT_OK
    snapshot = store.load()
    if snapshot is None:
        console.print("No reattach snapshot saved")
        return EXIT_OK
    table = Table(title=str(store.path))
    table.add_column("Field")
    table.add_column("Value")
    for key, value in snapshot.to_dict().items():
        table.add_row(key, ", ".join(value) if isinstance(value, list) else str(value))
    console.print(table)
    return EXIT_OK


async def _cmd_kill_hosts(config: DevtrackConfig, args: argparse.Namespace) -> int:
    tasks = TaskRegistry()
    multiplexer = _multiplexer(config, tasks)
    try:
        killed = await multiplexer.cleanup_orphans(kill_all=args.all)
    except DevtrackError as e:
        console.print(f"[red]Error:[/red] {e}")
        return EXIT_ERROR
    finally:
        await tasks.shutdown()
    console.print(f"Killed {killed} host session{'s' if killed != 1 else ''}")
    return EXIT_OK


def _cmd_config(config: DevtrackConfig, config_path: Path) -> int:
    console.print(f"Config: [bold]{config_path}[/bold] (valid)")
    console.print(f"State dir: {config.state_dir}")
    table = Table(title="Projects")
    for column in ("ID", "Name", "Path", "Components"):
        table.add_column(column)
    for project in config.projects:
        components = ", ".join(c.type for c in project.components if c.enabled) or "-"
        table.add_row(project.id, project.display_name, project.path, components)
    console.print(table)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="devtrack", description="Local developer operations console.")
    parser.add_argument("--config", type=Path, help="Config file (default: $DEVTRACK_CONFIG or ~/.devtrack/devtrack.yml)")
    parser.add_argument("--log-level", help="Override the configured log level")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Start the console")
    run.add_argument("--no-restore", action="store_true", help="Ignore the saved reattach snapshot")
    run.add_argument("--stop-sessions", action="store_true", help="Kill hosted sessions on exit instead of detaching")
    run.add_argument("--duration", type=float, default=0.0, help="Exit after this many seconds")

    sessions = sub.add_parser("sessions", help="List catalogued sessions")
    sessions.add_argument("--kind", choices=[k.value for k in SessionKind])

    snapshot = sub.add_parser("snapshot", help="Show the reattach snapshot")
    snapshot.add_argument("--clear", action="store_true", help="Delete the saved snapshot")

    kill = sub.add_parser("kill-hosts", help="Kill devtrack host sessions")
    kill.add_argument("--all", action="store_true", help="Kill every devtrack host, not only orphans")

    sub.add_parser("config", help="Validate the config and list projects")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config_path = (args.config or resolve_config_path()).expanduser()
    try:
        config = load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]Config error:[/red] {e}")
        return EXIT_CONFIG_ERROR

    setup_logging(args.log_level or config.logging.level, config.log_file)
    logger.info("devtrack %s (config %s)", args.command, config_path)

    if args.command == "run":
        return asyncio.run(_cmd_run(config, config_path, args))
    if args.command == "sessions":
        return asyncio.run(_cmd_sessions(config, args))
    if args.command == "snapshot":
        return _cmd_snapshot(config, args)
    if args.command == "kill-hosts":
        return asyncio.run(_cmd_kill_hosts(config, args))
    return _cmd_config(config, config_path)


if __name__ == "__main__":
    sys.exit(main())
