"""Persisted registry of agents (``state.json``)."""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from .models import Agent, AgentStatus

logger = logging.getLogger(__name__)


class StoreLoadError(Exception):
    """The state file exists but cannot be parsed."""


class Store:
    """
    Ordered list of agents persisted as ``{"agents": [...]}``.

    Every mutation rewrites the file. IDs are decimal strings from a counter
    persisted as ``next_id``, so an ID freed by removal is never reused. Older
    files without the counter start one past the highest stored ID.
    """

    def __init__(self, path: Path, default_backend_id: str = "claude"):
        self.path = Path(path)
        self.default_backend_id = default_backend_id
        self._agents: list[Agent] = []
        self._next_id = 1
        self._lock = threading.RLock()
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            logger.info(f"No state file at {self.path}, starting empty")
            return
        try:
            with open(self.path) as f:
                data = json.load(f)
            records = data.get("agents") or []
            saved_next_id = int(data.get("next_id") or 0)
            agents = [Agent.from_dict(r, default_backend_id=self.default_backend_id) for r in records]
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise StoreLoadError(f"parse state {self.path}: {e}") from e

        self._agents = agents
        max_id = 0
        for agent in agents:
            try:
                max_id = max(max_id, int(agent.id))
            except ValueError:
                logger.warning(f"Non-numeric agent id in state: {agent.id}")
        self._next_id = max(saved_next_id, max_id + 1)
        logger.info(f"Loaded {len(agents)} agents from {self.path}")

    def _save(self) -> bool:
        """Write state atomically. Failures are logged, never raised."""
        temp_file = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            data = {"next_id": self._next_id, "agents": [a.to_dict() for a in self._agents]}
            with open(temp_file, "w") as f:
                json.dump(data, f, indent=2)
            temp_file.replace(self.path)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"CRITICAL: Failed to save state to {self.path}: {e}")
            try:
                if temp_file.exists():
                    temp_file.unlink()
            except OSError:
                pass
            return False

    def _find(self, agent_id: str) -> Optional[Agent]:
        for agent in self._agents:
            if agent.id == agent_id:
                return agent
        return None

    def add(
        self,
        name: str,
        dir: str,
        backend_id: Optional[str] = None,
        session_name: str = "",
        discovered: bool = False,
    ) -> Agent:
        """Create and persist a new RUNNING agent."""
        with self._lock:
            now = datetime.now()
            agent = Agent(
                id=str(self._next_id),
                name=name,
                dir=dir,
                backend_id=backend_id or self.default_backend_id,
                status=AgentStatus.RUNNING,
                created_at=now,
                status_since=now,
                session_name=session_name,
                discovered=discovered,
            )
            self._next_id += 1
            self._agents.append(agent)
            self._save()
            logger.info(f"Added agent {agent.id} ({name}, {agent.backend_id}) in {dir}")
            return agent

    def remove(self, agent_id: str) -> bool:
        with self._lock:
            agent = self._find(agent_id)
            if agent is None:
                return False
            self._agents.remove(agent)
            self._save()
            logger.info(f"Removed agent {agent_id} ({agent.name})")
            return True

    def update_status(self, agent_id: str, status: AgentStatus) -> bool:
        """Set an agent's status. Returns True if it changed."""
        with self._lock:
            agent = self._find(agent_id)
            if agent is None or not agent.set_status(status):
                return False
            self._save()
            return True

    def update_session_name(self, agent_id: str, session_name: str) -> None:
        with self._lock:
            agent = self._find(agent_id)
            if agent is None:
                return
            agent.session_name = session_name
            self._save()

    def update_discovered(self, agent_id: str, discovered: bool) -> None:
        with self._lock:
            agent = self._find(agent_id)
            if agent is None:
                return
            agent.discovered = discovered
            self._save()

    def rename(self, agent_id: str, name: str) -> bool:
        with self._lock:
            agent = self._find(agent_id)
            if agent is None:
                return False
            agent.name = name
            self._save()
            return True

    def get(self, agent_id: str) -> Optional[Agent]:
        with self._lock:
            return self._find(agent_id)

    def get_by_name(self, name: str) -> Optional[Agent]:
        with self._lock:
            for agent in self._agents:
                if agent.name == name:
                    return agent
            return None

    def get_by_session(self, session_name: str) -> Optional[Agent]:
        if not session_name:
            return None
        with self._lock:
            for agent in self._agents:
                if agent.session_name == session_name:
                    return agent
            return None

    def list(self) -> list[Agent]:
        """Snapshot of the agent list, in insertion order."""
        with self._lock:
            return list(self._agents)

    def clear_done(self) -> int:
        """Drop every DONE agent. Returns how many were removed."""
        with self._lock:
            kept = [a for a in self._agents if a.status != AgentStatus.DONE]
            removed = len(self._agents) - len(kept)
            if removed:
                self._agents = kept
                self._save()
                logger.info(f"Cleared {removed} done agents")
            return removed
