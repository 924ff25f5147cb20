"""Unit tests for SessionCatalog persistence."""

import json

from devtrack.sessions.catalog import SessionCatalog
from devtrack.sessions.models import LaunchSpec, Session, SessionKind, SessionState


def make_session(session_id: str = "0123456789abcdef", state: SessionState = SessionState.RUNNING) -> Session:
    return Session(
        id=session_id,
        kind=SessionKind.ASSISTANT,
        project_id="alpha",
        work_dir="/tmp",
        launch=LaunchSpec(session_id=session_id, work_dir="/tmp", executable="claude", args=("--resume",)),
        name="assistant 1",
        custom_name="reviewer",
        state=state,
    )


def test_save_then_load_restores_live_sessions_as_stopped(tmp_path):
    catalog = SessionCatalog(tmp_path / "sessions.json")
    catalog.save([make_session()])

    loaded = catalog.load()

    session = loaded["0123456789abcdef"]
    assert session.state is SessionState.STOPPED
    assert session.display_name == "reviewer"
    assert session.launch.args == ("--resume",)
    assert session.host_name == "cdt-cc-01234567"


def test_errored_state_survives_reload(tmp_path):
    catalog = SessionCatalog(tmp_path / "sessions.json")
    catalog.save([make_session(state=SessionState.ERRORED)])
    assert catalog.load()["0123456789abcdef"].state is SessionState.ERRORED


def test_missing_catalog_is_empty(tmp_path):
    assert SessionCatalog(tmp_path / "nope.json").load() == {}


def test_corrupt_catalog_is_empty(tmp_path):
    path = tmp_path / "sessions.json"
    path.write_text("{not json", encoding="utf-8")
    assert SessionCatalog(path).load() == {}


def test_malformed_records_are_skipped(tmp_path):
    path = tmp_path / "sessions.json"
    good = make_session().to_dict()
    path.write_text(json.dumps({"version": 1, "sessions": [{"id": "x"}, good]}), encoding="utf-8")

    assert list(SessionCatalog(path).load()) == ["0123456789abcdef"]
