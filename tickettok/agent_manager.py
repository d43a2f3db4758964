"""Agent manager - maps agents to their tmux session handles."""

import logging
from typing import Optional

from .backends.base import Backend
from .context import RuntimeContext
from .models import Agent, AgentStatus, PaneInfo
from .pane_text import preview_from_lines
from .rwlock import ReadWriteLock
from .tmux_controller import (
    SessionCaptureError,
    TmuxSession,
    capture_pane_plain,
    kill_session_by_name,
    session_exists,
    session_name_for,
)

logger = logging.getLogger(__name__)


class AgentManager:
    """
    Owns the in-memory session registry.

    The registry is guarded by a reader/writer lock that only ever covers the
    dict itself; tmux calls happen outside it. Discovered agents never get a
    registry entry or a keep-alive client: they are read with plain
    ``capture-pane`` against their session name.
    """

    def __init__(self, context: RuntimeContext):
        self.context = context
        self._sessions: dict[str, TmuxSession] = {}
        # Killed agent IDs; a late lookup must not reattach to them
        self._killed: set[str] = set()
        self._lock = ReadWriteLock()

    def backend_for(self, agent: Agent) -> Backend:
        return self.context.registry.resolve(agent.backend_id)

    def _create(self, agent: Agent, extra_args: list[str]) -> TmuxSession:
        backend = self.backend_for(agent)
        command, strip_vars = backend.launch_command(extra_args)
        session = TmuxSession.create(
            session_name_for(agent.id),
            agent.dir,
            command,
            env_vars_to_strip=strip_vars,
            width=self.context.width,
            height=self.context.height,
            command_timeout=self.context.command_timeout,
        )
        with self._lock.write_locked():
            previous = self._sessions.get(agent.id)
            self._sessions[agent.id] = session
            self._killed.discard(agent.id)
        if previous is not None and previous is not session:
            previous.detach()
        agent.session_name = session.name
        return session

    def spawn(self, agent: Agent, extra_args: Optional[list[str]] = None) -> TmuxSession:
        """
        Start a tmux session for a new agent and record its session name.

        Raises:
            SessionCreationError: If tmux or the keep-alive client fails
        """
        args = self.context.args_for(self.backend_for(agent).id) + list(extra_args or [])
        session = self._create(agent, args)
        logger.info(f"Spawned agent {agent.id} ({agent.name}) in {session.name}")
        return session

    def respawn(self, agent: Agent) -> TmuxSession:
        """
        Re-create a dead agent's session with the backend's resume arguments.

        Raises:
            SessionCreationError: If tmux or the keep-alive client fails
        """
        backend = self.backend_for(agent)
        stale = agent.session_name or session_name_for(agent.id)
        # A leftover session with our name would make new-session fail
        kill_session_by_name(stale, timeout=self.context.command_timeout)
        args = self.context.args_for(backend.id) + backend.resume_args()
        session = self._create(agent, args)
        logger.info(f"Respawned agent {agent.id} ({agent.name}) in {session.name} with {args}")
        return session

    def get_session(self, agent: Agent) -> Optional[TmuxSession]:
        """
        Return the agent's handle, rebuilding it from the persisted session name
        if the session outlived a previous run.

        Discovered agents get a bare handle that is never attached or stored.
        """
        if agent.discovered:
            if not agent.session_name:
                return None
            return TmuxSession(
                agent.session_name,
                width=self.context.width,
                height=self.context.height,
                command_timeout=self.context.command_timeout,
            )

        with self._lock.read_locked():
            session = self._sessions.get(agent.id)
            killed = agent.id in self._killed
        if session is not None:
            return session
        if killed or not agent.session_name:
            return None

        candidate = TmuxSession(
            agent.session_name,
            width=self.context.width,
            height=self.context.height,
            command_timeout=self.context.command_timeout,
            strip_env_vars=self.backend_for(agent).env_vars_to_strip,
        )
        if not candidate.is_alive():
            return None
        try:
            candidate.attach()
        except OSError as e:
            logger.warning(f"Could not reattach keep-alive to {candidate.name}: {e}")

        with self._lock.write_locked():
            killed = agent.id in self._killed
            existing = self._sessions.get(agent.id)
            if existing is None and not killed:
                self._sessions[agent.id] = candidate
        if killed:
            candidate.detach()
            return None
        if existing is not None:
            candidate.detach()
            return existing
        logger.info(f"Reconnected agent {agent.id} to existing session {candidate.name}")
        return candidate

    def _capture(self, agent: Agent) -> Optional[str]:
        """Pane text for an agent, or None if its session is gone."""
        if agent.discovered:
            if not session_exists(agent.session_name, timeout=self.context.command_timeout):
                return None
            try:
                return capture_pane_plain(agent.session_name, timeout=self.context.command_timeout)
            except SessionCaptureError:
                return None

        session = self.get_session(agent)
        if session is None:
            return None
        try:
            return session.capture_pane_content()
        except SessionCaptureError as e:
            logger.debug(f"Capture failed for agent {agent.id}: {e}")
            self._drop(agent.id, session)
            return None

    def _drop(self, agent_id: str, session: TmuxSession) -> None:
        """Forget a handle whose session ended and stop its keep-alive client."""
        with self._lock.write_locked():
            if self._sessions.get(agent_id) is session:
                del self._sessions[agent_id]
        session.detach()

    def detect_status(self, agent: Agent) -> AgentStatus:
        """Hook file first, then pane scraping. A missing session is DONE."""
        backend = self.backend_for(agent)
        if not agent.discovered:
            hooked = backend.read_hook_status(agent.id)
            if hooked is not None:
                return hooked

        content = self._capture(agent)
        if content is None:
            return AgentStatus.DONE
        return backend.detect_status(content)

    def get_pane_info(self, agent: Agent, n: int) -> PaneInfo:
        """Preview and mode from a single capture. Empty when the session is gone."""
        content = self._capture(agent)
        if content is None:
            return PaneInfo()
        backend = self.backend_for(agent)
        lines = backend.strip_chrome(content.split("\n"), agent.status == AgentStatus.WAITING)
        return PaneInfo(
            preview=preview_from_lines(lines, n),
            mode=backend.detect_mode(content),
        )

    def get_preview(self, agent: Agent, n: int) -> list[str]:
        return self.get_pane_info(agent, n).preview

    def send_keys(self, agent: Agent, text: str) -> bool:
        session = self.get_session(agent)
        if session is None:
            logger.warning(f"No live session for agent {agent.id}; input dropped")
            return False
        return session.send_keys(text)

    def set_size(self, agent: Agent, cols: int, rows: int) -> bool:
        """Resize a managed agent's window. Discovered sessions are left alone."""
        if agent.discovered:
            return False
        session = self.get_session(agent)
        if session is None:
            return False
        return session.set_size(cols, rows)

    def kill(self, agent: Agent) -> bool:
        """
        Destroy the agent's session and its hook status file.

        Falls back to killing by the persisted session name when there is no
        handle in memory. Safe to call more than once.
        """
        with self._lock.write_locked():
            session = self._sessions.pop(agent.id, None)
            self._killed.add(agent.id)

        if session is not None:
            ok = session.kill()
        else:
            ok = kill_session_by_name(agent.session_name, timeout=self.context.command_timeout)

        self.backend_for(agent).clean_hook_status(agent.id)
        logger.info(f"Killed agent {agent.id} ({agent.name})")
        return ok

    def close_all(self) -> None:
        """Detach every keep-alive client. tmux sessions keep running."""
        with self._lock.write_locked():
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.detach()
        if sessions:
            logger.info(f"Detached {len(sessions)} keep-alive clients")

    def tracked_ids(self) -> list[str]:
        with self._lock.read_locked():
            return list(self._sessions)
