"""Unit tests for the devtrack command line."""

import pytest

from devtrack.cli.main import EXIT_CONFIG_ERROR, EXIT_OK, build_parser, main
from devtrack.tui.reattach import ReattachSnapshot
from devtrack.tui.snapshot_store import SnapshotStore


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "devtrack.yml"
    path.write_text(
        f"""
settings:
  state_dir: {tmp_path / "state"}
logging:
  file: {tmp_path / "devtrack.log"}
projects:
  - id: web
    path: /srv/web
    components:
      - type: frontend
""",
        encoding="utf-8",
    )
    return path


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_run_options_parse():
    args = build_parser().parse_args(["run", "--no-restore", "--duration", "1.5"])
    assert (args.command, args.no_restore, args.stop_sessions, args.duration) == ("run", True, False, 1.5)


def test_config_command_lists_projects(config_file, capsys):
    assert main(["--config", str(config_file), "config"]) == EXIT_OK
    out = capsys.readouterr().out
    assert "web" in out
    assert "frontend" in out
    assert (config_file.parent / "devtrack.log").exists()


def test_invalid_config_exits_with_config_error(tmp_path, capsys):
    path = tmp_path / "devtrack.yml"
    path.write_text("settings:\n  parallel_builds: 0\n", encoding="utf-8")

    assert main(["--config", str(path), "config"]) == EXIT_CONFIG_ERROR
    assert "Config error" in capsys.readouterr().out


def test_snapshot_command_shows_and_clears(config_file, capsys):
    store = SnapshotStore.in_state_dir(config_file.parent / "state")

    assert main(["--config", str(config_file), "snapshot"]) == EXIT_OK
    assert "No reattach snapshot saved" in capsys.readouterr().out

    store.save(ReattachSnapshot(current_view="git"))
    assert main(["--config", str(config_file), "snapshot"]) == EXIT_OK
    assert "current_view" in capsys.readouterr().out

    assert main(["--config", str(config_file), "snapshot", "--clear"]) == EXIT_OK
    assert store.load() is None
