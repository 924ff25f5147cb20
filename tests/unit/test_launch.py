"""Unit tests for session launch specs."""

import pytest

from devtrack.config.schema import DatabaseConnectionConfig, TerminalConfig
from devtrack.sessions.launch import build_launch_spec, database_command, default_shell
from devtrack.sessions.models import SessionKind


def test_postgres_command_includes_port_and_user():
    db = DatabaseConnectionConfig(type="postgres", name="app", host="db", port=5433, user="dev")
    assert database_command(TerminalConfig(), db) == ("psql", ("-h", "db", "-p", "5433", "-U", "dev", "app"))


def test_mysql_command_uses_mysql_flags():
    db = DatabaseConnectionConfig(type="mysql", name="shop", port=3307, user="root")
    assert database_command(TerminalConfig(), db) == ("mysql", ("-h", "localhost", "-P", "3307", "-u", "root", "shop"))


def test_sqlite_command_opens_file():
    db = DatabaseConnectionConfig(type="sqlite", name="/tmp/app.db")
    assert database_command(TerminalConfig(), db) == ("sqlite3", ("/tmp/app.db",))


def test_database_client_can_be_overridden():
    config = TerminalConfig(database_clients={"postgres": "pgcli"})
    db = DatabaseConnectionConfig(type="postgres", name="app")
    assert database_command(config, db)[0] == "pgcli"


def test_shell_prefers_configured_command(monkeypatch):
    monkeypatch.setenv("SHELL", "/bin/zsh")
    assert default_shell(TerminalConfig(shell_command="fish")) == "fish"
    assert default_shell(TerminalConfig()) == "/bin/zsh"
    monkeypatch.delenv("SHELL")
    assert default_shell(TerminalConfig()) == "/bin/sh"


def test_assistant_launch_spec():
    spec = build_launch_spec(SessionKind.ASSISTANT, "abc", "/srv/app", TerminalConfig(assistant_command="claude"))
    assert (spec.session_id, spec.work_dir, spec.executable, spec.args) == ("abc", "/srv/app", "claude", ())


def test_database_launch_requires_connection():
    with pytest.raises(ValueError):
        build_launch_spec(SessionKind.DATABASE, "abc", "/srv/app", TerminalConfig())
