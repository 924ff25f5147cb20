"""Launch specs for each session kind, derived from the terminal config."""

from __future__ import annotations

import os
from typing import Optional

from devtrack.config.schema import DatabaseConnectionConfig, TerminalConfig
from devtrack.sessions.models import LaunchSpec, SessionKind


def default_shell(config: TerminalConfig) -> str:
    return config.shell_command or os.environ.get("SHELL") or "/bin/sh"


def database_command(config: TerminalConfig, database: DatabaseConnectionConfig) -> tuple[str, tuple[str, ...]]:
    client = config.database_clients.get(database.type, database.type)
    if database.type == "sqlite":
        return client, (database.name,)
    args: list[str] = ["-h", database.host]
    if database.type == "postgres":
        if database.port:
            args.extend(["-p", str(database.port)])
        if database.user:
            args.extend(["-U", database.user])
    else:
        if database.port:
            args.extend(["-P", str(database.port)])
        if database.user:
            args.extend(["-u", database.user])
    args.append(database.name)
    return client, tuple(args)


def build_launch_spec(
    kind: SessionKind,
    session_id: str,
    work_dir: str,
    config: TerminalConfig,
    database: Optional[DatabaseConnectionConfig] = None,
) -> LaunchSpec:
    """Raises ValueError for a database session without a connection."""
    if kind is SessionKind.ASSISTANT:
        executable, args = config.assistant_command, ()
    elif kind is SessionKind.SHELL:
        executable, args = default_shell(config), ()
    else:
        if database is None:
            raise ValueError("database sessions need a database connection")
        executable, args = database_command(config, database)
    return LaunchSpec(session_id=session_id, work_dir=work_dir, executable=executable, args=args)
