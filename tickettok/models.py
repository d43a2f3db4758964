"""Data models for TicketTok."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class AgentStatus(Enum):
    """Agent activity status."""
    RUNNING = "RUNNING"  # Actively producing output
    WAITING = "WAITING"  # Blocked on a permission/confirmation prompt
    IDLE = "IDLE"        # At its input prompt
    DONE = "DONE"        # Process or session ended

    @classmethod
    def parse(cls, value: Optional[str]) -> "AgentStatus":
        """Map stored/hook text to a status; anything unrecognized is RUNNING."""
        if value:
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        return cls.RUNNING


@dataclass
class Agent:
    """A tracked agent hosted in one tmux session."""
    id: str
    name: str
    dir: str
    backend_id: str
    status: AgentStatus = AgentStatus.RUNNING
    created_at: datetime = field(default_factory=datetime.now)
    status_since: datetime = field(default_factory=datetime.now)
    session_name: str = ""  # Empty until spawned
    discovered: bool = False  # Found via discovery rather than spawned by us

    def set_status(self, status: AgentStatus, now: Optional[datetime] = None) -> bool:
        """Apply a status transition. Returns True if the status changed."""
        if status == self.status:
            return False
        self.status = status
        self.status_since = now or datetime.now()
        return True

    def to_dict(self) -> dict:
        """Convert agent to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "dir": self.dir,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "status_since": self.status_since.isoformat(),
            "session_name": self.session_name,
            "discovered": self.discovered,
            "backend": self.backend_id,
        }

    @classmethod
    def from_dict(cls, data: dict, default_backend_id: str = "claude") -> "Agent":
        """Create agent from dictionary.

        Records written before backends existed carry no ``backend`` key and
        are assigned ``default_backend_id``.
        """
        created_at = datetime.fromisoformat(data["created_at"]) if data.get("created_at") else datetime.now()
        status_since = (
            datetime.fromisoformat(data["status_since"]) if data.get("status_since") else created_at
        )
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            dir=data.get("dir", ""),
            backend_id=data.get("backend") or default_backend_id,
            status=AgentStatus.parse(data.get("status")),
            created_at=created_at,
            status_since=status_since,
            session_name=data.get("session_name", "") or "",
            discovered=bool(data.get("discovered", False)),
        )


@dataclass
class DiscoveredAgent:
    """A candidate agent found by scanning tmux panes or the process table."""
    name: str
    dir: str
    session_name: str = ""  # Empty for process-only finds
    pid: Optional[int] = None
    backend_id: str = ""

    @property
    def source(self) -> str:
        return "process" if self.pid else "tmux"


@dataclass
class PaneInfo:
    """Preview lines and mode tag taken from a single pane capture."""
    preview: list[str] = field(default_factory=list)
    mode: str = ""


@dataclass
class HookRecord:
    """Status record written by an agent CLI's lifecycle hook."""
    state: str
    ts: int  # Unix epoch seconds

    def to_dict(self) -> dict:
        return {"state": self.state, "ts": self.ts}
