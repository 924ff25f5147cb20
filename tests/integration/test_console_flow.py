"""End-to-end flow through ConsoleRuntime with the real project, build, process and git services."""

import pytest

from devtrack.config.loader import load_config, save_config
from devtrack.config.schema import ComponentConfig, DevtrackConfig, ProjectConfig, TerminalConfig
from devtrack.core.events import Event, EventType
from devtrack.core.viewmodels import ViewKind
from devtrack.runtime import ConsoleRuntime
from tests.conftest import FakeHost, wait_until


@pytest.fixture
def config_path(tmp_path):
    project_dir = tmp_path / "api"
    project_dir.mkdir()
    config = DevtrackConfig(
        terminal=TerminalConfig(capture_interval_ms=10),
        projects=[
            ProjectConfig(
                id="api",
                path=str(project_dir),
                components=[ComponentConfig(type="backend", build=["echo building", "touch api.bin"], run="sleep 30")],
            )
        ],
    )
    return save_config(config, tmp_path / "devtrack.yml")


@pytest.mark.asyncio
async def test_build_run_and_add_project(config_path, tmp_path):
    runtime = ConsoleRuntime(load_config(config_path), config_path, host=FakeHost(), state_dir=tmp_path / "state")
    notifications = []
    runtime.coordinator.subscribe_notifications(notifications.append)
    await runtime.start(restore=False)
    await wait_until(lambda: not runtime.state.flags().git_loading, timeout=3)

    runtime.handle_event(Event.build("api"))
    await wait_until(lambda: notifications, timeout=3)
    assert notifications[-1].message == "api built successfully"
    assert (tmp_path / "api" / "api.bin").exists()
    logs = runtime.coordinator.get_view_model(ViewKind.LOGS).lines
    assert any(line.message == "building" for line in logs)

    runtime.handle_event(Event.process(EventType.START_PROCESS, "api", "backend"))
    await wait_until(
        lambda: [p.state for p in runtime.coordinator.get_view_model(ViewKind.PROCESSES).processes if p.id == "api/backend"]
        == ["running"],
        timeout=3,
    )

    (tmp_path / "web").mkdir()
    runtime.handle_event(Event(type=EventType.ADD_PROJECT, value=str(tmp_path / "web")))
    await wait_until(lambda: notifications[-1].title == "Project Added", timeout=3)
    assert [p.id for p in load_config(config_path).projects] == ["api", "web"]

    await runtime.shutdown()
    processes = await runtime.processes.list_processes()
    assert all(p.state.value == "stopped" for p in processes)
