"""PTY-backed keep-alive client for tmux sessions.

tmux may stop rendering a session that has no attached clients, which leaves
``capture-pane`` with stale or empty content. A ``KeepAliveClient`` runs
``tmux attach-session`` inside a pseudo-terminal and discards everything it
prints, so the session always has a reader. Nothing here ever reads pane
state; capture is a separate call on the session handle.

The client starts in its own session but never takes the PTY as its
controlling terminal, so there is no SIGWINCH path. Sessions use
``window-size manual`` and are sized with ``resize-window``.
"""

import fcntl
import logging
import os
import pty
import signal
import struct
import subprocess
import termios
import threading
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

DRAIN_CHUNK_BYTES = 4096


def _set_winsize(fd: int, cols: int, rows: int) -> None:
    winsize = struct.pack("HHHH", rows, cols, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)


def client_env(strip_vars: Sequence[str] = ()) -> dict[str, str]:
    """Current environment minus ``strip_vars``, with a 256-colour TERM."""
    env = {k: v for k, v in os.environ.items() if k not in strip_vars}
    env["TERM"] = "xterm-256color"
    return env


class KeepAliveClient:
    """A background ``tmux attach-session`` whose output is drained and dropped."""

    def __init__(
        self,
        session_name: str,
        cols: int = 200,
        rows: int = 50,
        strip_env_vars: Sequence[str] = (),
    ):
        self.session_name = session_name
        self.cols = cols
        self.rows = rows
        self.strip_env_vars = list(strip_env_vars)
        self._master_fd: Optional[int] = None
        self._proc: Optional[subprocess.Popen] = None
        self._drain_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def attached(self) -> bool:
        return self._master_fd is not None

    def attach(self) -> None:
        """
        Start the background client.

        Raises:
            OSError: If the PTY or the tmux client process cannot be created
        """
        with self._lock:
            if self._master_fd is not None:
                return

            master_fd, slave_fd = pty.openpty()
            try:
                _set_winsize(slave_fd, self.cols, self.rows)
                # -d detaches stale clients leaked by a previous crash
                proc = subprocess.Popen(
                    ["tmux", "attach-session", "-d", "-t", self.session_name],
                    stdin=slave_fd,
                    stdout=slave_fd,
                    stderr=slave_fd,
                    env=client_env(self.strip_env_vars),
                    start_new_session=True,
                    close_fds=True,
                )
            except (OSError, subprocess.SubprocessError):
                os.close(master_fd)
                raise
            finally:
                os.close(slave_fd)

            self._master_fd = master_fd
            self._proc = proc
            self._drain_thread = threading.Thread(
                target=self._drain,
                args=(master_fd,),
                name=f"keepalive-{self.session_name}",
                daemon=True,
            )
            self._drain_thread.start()
            logger.debug(f"Keep-alive client attached to {self.session_name} (pid={proc.pid})")

    def _drain(self, fd: int) -> None:
        """Read and discard client output so the PTY buffer never fills."""
        while True:
            try:
                if not os.read(fd, DRAIN_CHUNK_BYTES):
                    break
            except OSError:
                break

    def set_size(self, cols: int, rows: int) -> None:
        """Resize the PTY. No-op when detached."""
        self.cols = cols
        self.rows = rows
        fd = self._master_fd
        if fd is None:
            return
        try:
            _set_winsize(fd, cols, rows)
        except OSError as e:
            logger.warning(f"Failed to resize PTY for {self.session_name}: {e}")

    def detach(self) -> None:
        """Close the PTY and stop the client process. Safe to call repeatedly."""
        with self._lock:
            fd, proc = self._master_fd, self._proc
            self._master_fd = None
            self._proc = None

        if fd is not None:
            try:
                os.close(fd)
            except OSError:
                pass

        if proc is not None and proc.poll() is None:
            try:
                proc.send_signal(signal.SIGHUP)
                proc.wait(timeout=1)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait(timeout=1)
            except OSError as e:
                logger.debug(f"Keep-alive client for {self.session_name} already gone: {e}")
        if proc is not None:
            logger.debug(f"Keep-alive client detached from {self.session_name}")
