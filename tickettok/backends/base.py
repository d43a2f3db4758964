"""Backend strategy interface shared by all agent CLIs."""

import logging
import os
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from ..hooks import HookStatusReader, clean_hook_status
from ..models import AgentStatus, DiscoveredAgent
from ..pane_text import derive_name_from_dir, recent_lines, strip_ansi
from ..tmux_controller import (
    DEFAULT_COMMAND_TIMEOUT,
    SessionCaptureError,
    capture_pane_plain,
    list_panes,
)

logger = logging.getLogger(__name__)

DONE_PATTERNS = ("exited", "goodbye", "session ended", "bye")


@dataclass(frozen=True)
class StatusRule:
    """One classification rule.

    ``predicate`` receives a cleaned, lowercased-as-needed line and returns
    True on a match. ``bottom_only`` rules look at the bottommost non-blank
    line only.
    """
    status: AgentStatus
    predicate: Callable[[str], bool]
    bottom_only: bool = False

    def matches(self, recent: list[str]) -> bool:
        lines = recent[:1] if self.bottom_only else recent
        return any(self.predicate(line) for line in lines)


def contains_any(*patterns: str) -> Callable[[str], bool]:
    """Case-insensitive substring predicate."""
    lowered = tuple(p.lower() for p in patterns)

    def predicate(line: str) -> bool:
        lower = line.lower()
        return any(p in lower for p in lowered)

    return predicate


def done_rule() -> StatusRule:
    return StatusRule(AgentStatus.DONE, contains_any(*DONE_PATTERNS), bottom_only=True)


def process_cwd(pid: int, timeout: float = DEFAULT_COMMAND_TIMEOUT) -> str:
    """Working directory of a process, or "" if it cannot be determined."""
    try:
        return os.readlink(f"/proc/{pid}/cwd")
    except OSError:
        pass
    try:
        result = subprocess.run(
            ["lsof", "-a", "-p", str(pid), "-d", "cwd", "-Fn"],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"lsof failed for pid {pid}: {e}")
        return ""
    for line in result.stdout.split("\n"):
        if line.startswith("n/"):
            return line[1:]
    return ""


class Backend(ABC):
    """Strategy for one agent CLI: launch, classify, discover, hooks.

    Classification and discovery never raise; failures degrade to the
    optimistic RUNNING default or an empty result.
    """

    id: str = ""
    name: str = ""
    executable: str = ""
    install_hint: str = ""
    scan_lines: int = 20
    env_vars_to_strip: tuple[str, ...] = ()
    process_name_prefix: str = ""

    def __init__(
        self,
        hook_reader: Optional[HookStatusReader] = None,
        state_dir: Optional[Path] = None,
        home_dir: Optional[Path] = None,
        session_prefix: str = "tickettok_",
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ):
        self.hook_reader = hook_reader
        self.state_dir = Path(state_dir) if state_dir else Path.home() / ".tickettok"
        self.home_dir = Path(home_dir) if home_dir else Path.home()
        self.session_prefix = session_prefix
        self.command_timeout = command_timeout
        self.status_rules: list[StatusRule] = self.build_status_rules()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"

    # Launching

    def launch_command(self, extra_args: Optional[list[str]] = None) -> tuple[str, list[str]]:
        """Return the shell command line and the env vars to unset before it."""
        cmd = self.executable
        if extra_args:
            cmd = f"{cmd} {' '.join(extra_args)}"
        return cmd, list(self.env_vars_to_strip)

    def resume_args(self) -> list[str]:
        return []

    def check_deps(self) -> Optional[str]:
        """Install hint if the CLI is missing from PATH, else None."""
        if shutil.which(self.executable) is None:
            return self.install_hint or self.executable
        return None

    # Classification

    @abstractmethod
    def build_status_rules(self) -> list[StatusRule]:
        """Ordered rules; the first match wins."""

    def detect_status(self, pane_text: str) -> AgentStatus:
        """Classify pane text. Never raises; unknown content is RUNNING."""
        recent = recent_lines(pane_text, self.scan_lines)
        if not recent:
            return AgentStatus.RUNNING
        for rule in self.status_rules:
            if rule.matches(recent):
                return rule.status
        return AgentStatus.RUNNING

    def detect_mode(self, pane_text: str) -> str:
        return ""

    def strip_chrome(self, lines: list[str], is_waiting: bool) -> list[str]:
        return lines

    @property
    def signatures(self) -> tuple[str, ...]:
        return ()

    def looks_like_me(self, pane_text: str) -> bool:
        """True if the pane shows this CLI's UI."""
        lower = strip_ansi(pane_text).lower()
        return any(sig in lower for sig in self.signatures)

    # Discovery

    def discover(self) -> list[DiscoveredAgent]:
        """Find unmanaged tmux sessions and bare processes running this CLI."""
        found = self.discover_tmux()
        found.extend(self.discover_processes())
        return found

    def discover_tmux(self) -> list[DiscoveredAgent]:
        found: list[DiscoveredAgent] = []
        seen: set[str] = set()
        for pane in list_panes(timeout=self.command_timeout):
            session = pane.session_name
            if session.startswith(self.session_prefix) or session in seen:
                continue

            matched = self.executable in pane.command.lower()
            if not matched:
                try:
                    content = capture_pane_plain(session, timeout=self.command_timeout)
                except SessionCaptureError:
                    continue
                matched = self.looks_like_me(content)

            if matched:
                seen.add(session)
                found.append(DiscoveredAgent(
                    name=derive_name_from_dir(pane.path),
                    dir=pane.path,
                    session_name=session,
                    backend_id=self.id,
                ))
        return found

    def discover_processes(self) -> list[DiscoveredAgent]:
        try:
            result = subprocess.run(
                ["pgrep", "-af", self.executable],
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"pgrep failed for {self.executable}: {e}")
            return []
        if result.returncode != 0:
            return []

        found = []
        for line in result.stdout.strip().split("\n"):
            parts = line.strip().split(" ", 1)
            if len(parts) < 2 or self.executable not in parts[1]:
                continue
            try:
                pid = int(parts[0])
            except ValueError:
                continue
            found.append(DiscoveredAgent(
                name=f"{self.process_name_prefix or self.id}-{pid}",
                dir=process_cwd(pid, timeout=self.command_timeout) or "unknown",
                pid=pid,
                backend_id=self.id,
            ))
        return found

    # Hooks

    @abstractmethod
    def install_hooks(self) -> None:
        """Install the hook script and register it with the CLI.

        Raises:
            OSError / ValueError: Callers log and continue
        """

    @property
    def status_dir(self) -> Path:
        if self.hook_reader is not None:
            return self.hook_reader.status_dir
        return self.state_dir / "status"

    def read_hook_status(self, agent_id: str) -> Optional[AgentStatus]:
        if self.hook_reader is None:
            return None
        return self.hook_reader.read(agent_id)

    def clean_hook_status(self, agent_id: str) -> None:
        clean_hook_status(self.status_dir, agent_id)
