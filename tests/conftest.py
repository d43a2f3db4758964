"""Shared pytest fixtures for TicketTok tests."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from tickettok.agent_manager import AgentManager
from tickettok.context import RuntimeContext
from tickettok.models import Agent, AgentStatus, PaneInfo
from tickettok.server import create_app
from tickettok.store import Store
from tickettok.tmux_controller import TmuxSession


@pytest.fixture
def config(tmp_path: Path) -> dict:
    """Minimal config pointing all state at a temp directory."""
    return {
        "paths": {"state_dir": str(tmp_path / "state")},
        "preview": {"lines": 3},
    }


@pytest.fixture
def context(config: dict, tmp_path: Path) -> RuntimeContext:
    """
    RuntimeContext rooted in a temp directory.

    The fake home keeps hook installation away from the real ~/.claude etc.
    """
    return RuntimeContext.from_config(config, home_dir=tmp_path / "home")


@pytest.fixture
def store(context: RuntimeContext) -> Store:
    return Store(context.state_file, default_backend_id=context.registry.default_id)


@pytest.fixture
def mock_session() -> MagicMock:
    """
    Mock TmuxSession for testing without actual tmux sessions.

    Returns:
        MagicMock with common session methods configured
    """
    mock = MagicMock(spec=TmuxSession)
    mock.name = "tickettok_1"
    mock.is_alive.return_value = True
    mock.capture_pane_content.return_value = "Working...\n❯ "
    mock.send_keys.return_value = True
    mock.set_size.return_value = True
    mock.kill.return_value = True
    return mock


@pytest.fixture
def mock_manager(context: RuntimeContext) -> MagicMock:
    """Mock AgentManager with a real context (for the backend registry)."""
    mock = MagicMock(spec=AgentManager)
    mock.context = context
    mock.kill.return_value = True
    mock.send_keys.return_value = True
    mock.set_size.return_value = True
    mock.detect_status.return_value = AgentStatus.IDLE
    mock.get_pane_info.return_value = PaneInfo(preview=["Edited app.py"], mode="")
    return mock


@pytest.fixture
def sample_agent() -> Agent:
    return Agent(
        id="1",
        name="webapp",
        dir="/tmp/webapp",
        backend_id="claude",
        session_name="tickettok_1",
    )


@pytest.fixture
def test_client(store: Store, mock_manager: MagicMock, config: dict) -> TestClient:
    """FastAPI TestClient with a real store and a mocked manager."""
    monitor = MagicMock()
    monitor.is_running = True
    monitor.last_message = ""
    app = create_app(store=store, manager=mock_manager, monitor=monitor, config=config)
    return TestClient(app)
