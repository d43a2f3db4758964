"""tmux operations for spawning and controlling agent sessions."""

import logging
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from typing import Sequence

from .keepalive import KeepAliveClient

logger = logging.getLogger(__name__)

SESSION_PREFIX = "tickettok_"

DEFAULT_WIDTH = 200
DEFAULT_HEIGHT = 50
DEFAULT_COMMAND_TIMEOUT = 5.0

# Separator for list-panes output; session names and paths may contain spaces
_FIELD_SEP = "|"


class SessionError(Exception):
    """Base class for tmux session failures."""


class SessionCreationError(SessionError):
    """The tmux session or its keep-alive client could not be started."""


class SessionCaptureError(SessionError):
    """The pane could not be captured (usually because the session vanished)."""


def session_name_for(agent_id: str) -> str:
    """Return the tmux session name for an agent ID."""
    return f"{SESSION_PREFIX}{agent_id}"


def _run_tmux(
    *args: str,
    check: bool = True,
    timeout: float = DEFAULT_COMMAND_TIMEOUT,
) -> subprocess.CompletedProcess:
    """Run a tmux command.

    Raises:
        subprocess.CalledProcessError: Non-zero exit with ``check=True``
        subprocess.TimeoutExpired: tmux did not answer within ``timeout``
        OSError: tmux is not installed
    """
    cmd = ["tmux"] + list(args)
    logger.debug(f"Running tmux command: {' '.join(cmd)}")
    return subprocess.run(cmd, capture_output=True, text=True, check=check, timeout=timeout)


def tmux_available() -> bool:
    return shutil.which("tmux") is not None


def session_exists(session_name: str, timeout: float = DEFAULT_COMMAND_TIMEOUT) -> bool:
    """Check if a tmux session exists. Never raises."""
    if not session_name:
        return False
    try:
        result = _run_tmux("has-session", "-t", session_name, check=False, timeout=timeout)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"has-session failed for {session_name}: {e}")
        return False
    return result.returncode == 0


def capture_pane_plain(session_name: str, timeout: float = DEFAULT_COMMAND_TIMEOUT) -> str:
    """
    Capture a pane without any keep-alive client (used for foreign sessions).

    Raises:
        SessionCaptureError: If the pane cannot be captured
    """
    try:
        result = _run_tmux("capture-pane", "-p", "-J", "-t", session_name, timeout=timeout)
    except (OSError, subprocess.SubprocessError) as e:
        raise SessionCaptureError(f"capture-pane {session_name}: {e}") from e
    return result.stdout


def kill_session_by_name(session_name: str, timeout: float = DEFAULT_COMMAND_TIMEOUT) -> bool:
    """Kill a tmux session by name. A missing session counts as success."""
    if not session_name or not session_exists(session_name, timeout=timeout):
        return True
    try:
        _run_tmux("kill-session", "-t", session_name, timeout=timeout)
        logger.info(f"Killed session {session_name}")
        return True
    except subprocess.CalledProcessError as e:
        logger.error(f"Failed to kill session {session_name}: {e.stderr}")
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.error(f"Failed to kill session {session_name}: {e}")
    return False


def list_sessions(timeout: float = DEFAULT_COMMAND_TIMEOUT) -> list[str]:
    """List all tmux session names."""
    try:
        result = _run_tmux("list-sessions", "-F", "#{session_name}", check=False, timeout=timeout)
    except (OSError, subprocess.TimeoutExpired):
        return []
    if result.returncode != 0:
        return []
    return [s.strip() for s in result.stdout.strip().split("\n") if s.strip()]


@dataclass
class PaneRecord:
    """One row of ``tmux list-panes -a`` output."""
    session_name: str
    path: str
    command: str


def _parse_pane_rows(output: str) -> list[PaneRecord]:
    rows = []
    for line in output.strip().split("\n"):
        if not line:
            continue
        parts = line.split(_FIELD_SEP, 2)
        if len(parts) < 3:
            continue
        rows.append(PaneRecord(session_name=parts[0], path=parts[1], command=parts[2]))
    return rows


def list_panes(timeout: float = DEFAULT_COMMAND_TIMEOUT) -> list[PaneRecord]:
    """
    Enumerate every pane on the server with its session, cwd and command.

    Falls back to ``list-sessions`` (one row per session) when ``list-panes -a``
    is unavailable. Returns an empty list when tmux is not running.
    """
    if not tmux_available():
        return []
    fmt = _FIELD_SEP.join(["#{session_name}", "#{pane_current_path}", "#{pane_current_command}"])
    try:
        result = _run_tmux("list-panes", "-a", "-F", fmt, check=False, timeout=timeout)
        if result.returncode == 0:
            return _parse_pane_rows(result.stdout)
        fallback_fmt = _FIELD_SEP.join(["#{session_name}", "#{session_path}", "#{pane_current_command}"])
        result = _run_tmux("list-sessions", "-F", fallback_fmt, check=False, timeout=timeout)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"Pane enumeration failed: {e}")
        return []
    if result.returncode != 0:
        return []
    return _parse_pane_rows(result.stdout)


def build_program(launch_command: str, env_vars_to_strip: Sequence[str] = ()) -> str:
    """Wrap a launch command with ``env -u`` for each variable to strip."""
    if not env_vars_to_strip:
        return launch_command
    unset = " ".join(f"-u {shlex.quote(var)}" for var in env_vars_to_strip)
    return f"env {unset} {launch_command}"


class TmuxSession:
    """Handle for one tmux session hosting one agent process.

    The handle owns an optional keep-alive client. Its lifetime is independent
    of the agent record: a handle can be rebuilt from a persisted session name
    after a restart.
    """

    def __init__(
        self,
        name: str,
        width: int = DEFAULT_WIDTH,
        height: int = DEFAULT_HEIGHT,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        strip_env_vars: Sequence[str] = (),
    ):
        self.name = name
        self.width = width
        self.height = height
        self.command_timeout = command_timeout
        self._client = KeepAliveClient(name, cols=width, rows=height, strip_env_vars=strip_env_vars)

    def __repr__(self) -> str:
        return f"TmuxSession(name={self.name!r}, attached={self.attached})"

    def _tmux(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        return _run_tmux(*args, check=check, timeout=self.command_timeout)

    @classmethod
    def create(
        cls,
        name: str,
        work_dir: str,
        launch_command: str,
        env_vars_to_strip: Sequence[str] = (),
        width: int = DEFAULT_WIDTH,
        height: int = DEFAULT_HEIGHT,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> "TmuxSession":
        """
        Start a detached tmux session running ``launch_command`` and attach
        the keep-alive client.

        Args:
            name: tmux session name
            work_dir: Directory to start the agent in
            launch_command: Shell command line for the agent CLI
            env_vars_to_strip: Variables to unset before launching
            width: Initial window width
            height: Initial window height
            command_timeout: Upper bound for each tmux invocation

        Returns:
            The attached session handle

        Raises:
            SessionCreationError: If tmux cannot start the session or the
                keep-alive client cannot attach
        """
        program = build_program(launch_command, env_vars_to_strip)
        try:
            _run_tmux(
                "new-session",
                "-d",
                "-s", name,
                "-x", str(width),
                "-y", str(height),
                "-c", work_dir,
                program,
                timeout=command_timeout,
            )
        except subprocess.CalledProcessError as e:
            raise SessionCreationError(f"tmux new-session: {(e.stderr or '').strip()}") from e
        except (OSError, subprocess.TimeoutExpired) as e:
            raise SessionCreationError(f"tmux new-session: {e}") from e

        session = cls(
            name,
            width=width,
            height=height,
            command_timeout=command_timeout,
            strip_env_vars=env_vars_to_strip,
        )
        try:
            session.attach()
        except (OSError, subprocess.SubprocessError) as e:
            kill_session_by_name(name, timeout=command_timeout)
            raise SessionCreationError(f"keep-alive attach after create: {e}") from e

        logger.info(f"Created session {name} in {work_dir}: {program}")
        return session

    @property
    def attached(self) -> bool:
        return self._client.attached

    def attach(self) -> None:
        """
        Attach the keep-alive client.

        Switches the window to manual sizing so ``resize-window`` has full
        control, then forces the window to the handle's geometry.

        Raises:
            OSError: If the client process cannot be started
        """
        try:
            self._tmux("set-option", "-t", self.name, "window-size", "manual", check=False)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"window-size manual failed for {self.name}: {e}")
        self._client.attach()
        self._resize_window(self.width, self.height)

    def detach(self) -> None:
        """Release the keep-alive client. The tmux session keeps running."""
        self._client.detach()

    def is_alive(self) -> bool:
        """Check if the underlying tmux session still exists."""
        return session_exists(self.name, timeout=self.command_timeout)

    def capture_pane_content(self, history_lines: int = 0) -> str:
        """
        Capture the rendered pane with ANSI colours and soft-wraps joined.

        Args:
            history_lines: Scrollback lines to include above the visible area

        Raises:
            SessionCaptureError: If the session vanished or tmux failed
        """
        args = ["capture-pane", "-p", "-e", "-J"]
        if history_lines > 0:
            args += ["-S", f"-{history_lines}"]
        args += ["-t", self.name]
        try:
            result = self._tmux(*args)
        except subprocess.CalledProcessError as e:
            raise SessionCaptureError(f"capture-pane {self.name}: {(e.stderr or '').strip()}") from e
        except (OSError, subprocess.TimeoutExpired) as e:
            raise SessionCaptureError(f"capture-pane {self.name}: {e}") from e
        return result.stdout

    def send_keys(self, text: str) -> bool:
        """
        Type literal text into the pane and submit it with Enter.

        ``-l`` stops tmux from reading words like ``Enter`` or ``C-c`` in
        the text as key names.

        Returns:
            True if tmux accepted both keystroke batches
        """
        try:
            self._tmux("send-keys", "-t", self.name, "-l", "--", text)
            self._tmux("send-keys", "-t", self.name, "Enter")
            logger.info(f"Sent input to {self.name}: {text[:50]}")
            return True
        except subprocess.CalledProcessError as e:
            logger.error(f"Failed to send input to {self.name}: {e.stderr}")
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error(f"Failed to send input to {self.name}: {e}")
        return False

    def _resize_window(self, cols: int, rows: int) -> bool:
        try:
            self._tmux("resize-window", "-t", self.name, "-x", str(cols), "-y", str(rows))
            return True
        except subprocess.CalledProcessError as e:
            logger.warning(f"Failed to resize {self.name}: {e.stderr}")
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"Failed to resize {self.name}: {e}")
        return False

    def set_size(self, cols: int, rows: int) -> bool:
        """Resize both the keep-alive PTY and the tmux window."""
        self.width = cols
        self.height = rows
        self._client.set_size(cols, rows)
        return self._resize_window(cols, rows)

    def kill(self) -> bool:
        """Detach the keep-alive client, then destroy the session. Idempotent."""
        self.detach()
        return kill_session_by_name(self.name, timeout=self.command_timeout)

