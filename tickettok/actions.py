"""Operator actions shared by the HTTP API and the CLI."""

import logging
import os
from typing import Optional

from .agent_manager import AgentManager
from .backends.registry import BackendRegistry, UnknownBackendError
from .models import Agent, AgentStatus
from .pane_text import derive_name_from_dir
from .store import Store
from .tmux_controller import SessionCreationError

logger = logging.getLogger(__name__)


class ActionError(Exception):
    """An operator action failed; the message is shown to the operator."""


class AgentNotFoundError(ActionError):
    pass


class InvalidActionError(ActionError):
    pass


def find_agent(store: Store, ref: str) -> Agent:
    """Look up an agent by ID, then by name."""
    agent = store.get(ref) or store.get_by_name(ref)
    if agent is None:
        raise AgentNotFoundError(f"No agent named or numbered '{ref}'")
    return agent


def spawn_agent(
    store: Store,
    manager: AgentManager,
    registry: BackendRegistry,
    directory: str,
    name: Optional[str] = None,
    backend_id: Optional[str] = None,
    extra_args: Optional[list[str]] = None,
) -> Agent:
    """
    Register a new agent and start its tmux session.

    Raises:
        InvalidActionError: Bad directory, unknown backend or missing CLI
        ActionError: tmux could not start the session (the record is removed)
    """
    directory = os.path.abspath(os.path.expanduser(directory or "~"))
    if not os.path.isdir(directory):
        raise InvalidActionError(f"Not a directory: {directory}")

    try:
        backend = registry.get(backend_id) if backend_id else registry.default
    except UnknownBackendError:
        raise InvalidActionError(f"Unknown backend: {backend_id}") from None

    missing = backend.check_deps()
    if missing:
        raise InvalidActionError(f"Missing dependency: {missing}")

    agent = store.add(name or derive_name_from_dir(directory), directory, backend_id=backend.id)
    try:
        manager.spawn(agent, extra_args=extra_args)
    except SessionCreationError as e:
        store.remove(agent.id)
        logger.error(f"Spawn failed for {agent.name}: {e}")
        raise ActionError(f"Spawn error: {e}") from e
    store.update_session_name(agent.id, agent.session_name)
    return agent


def kill_agent(store: Store, manager: AgentManager, agent: Agent) -> bool:
    """Kill the agent's session, clean its hook file and forget it."""
    killed = manager.kill(agent)
    if not killed:
        logger.warning(f"tmux did not confirm kill of {agent.session_name}")
    store.remove(agent.id)
    return killed


def resume_agent(store: Store, manager: AgentManager, agent: Agent, name: Optional[str] = None) -> Agent:
    """
    Bring a dead managed agent back with the backend's resume arguments,
    optionally renaming it first.

    Raises:
        InvalidActionError: The agent was discovered, not spawned here
        ActionError: tmux could not start the session
    """
    if agent.discovered:
        raise InvalidActionError("External session cannot be resumed")

    if name and name != agent.name:
        store.rename(agent.id, name)

    session = manager.get_session(agent)
    if session is not None and session.is_alive():
        return agent

    try:
        manager.respawn(agent)
    except SessionCreationError as e:
        logger.error(f"Resume failed for {agent.name}: {e}")
        raise ActionError(f"Resume error: {e}") from e
    store.update_session_name(agent.id, agent.session_name)
    store.update_status(agent.id, AgentStatus.RUNNING)
    logger.info(f"Resumed: {agent.name}")
    return agent


def install_all_hooks(registry: BackendRegistry) -> dict[str, Optional[str]]:
    """
    Install hooks for every backend.

    Returns:
        backend id -> error message, or None on success
    """
    results: dict[str, Optional[str]] = {}
    for backend in registry:
        try:
            backend.install_hooks()
            results[backend.id] = None
        except (OSError, ValueError) as e:
            logger.warning(f"Could not install {backend.id} hooks: {e}")
            results[backend.id] = str(e)
    return results
