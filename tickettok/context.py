"""Runtime context built from the YAML config and passed to every component."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .backends.registry import DEFAULT_BACKEND_ID, BackendRegistry
from .hooks import DEFAULT_OTHER_TTL, DEFAULT_RUNNING_TTL, HookStatusReader
from .tmux_controller import DEFAULT_COMMAND_TIMEOUT, DEFAULT_HEIGHT, DEFAULT_WIDTH, SESSION_PREFIX

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = "~/.tickettok"


@dataclass
class RuntimeContext:
    """Filesystem roots, backends and tmux settings for one process."""
    state_dir: Path
    registry: BackendRegistry
    hook_reader: HookStatusReader
    home_dir: Path = field(default_factory=Path.home)
    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    preview_lines: int = 5
    backend_args: dict[str, list[str]] = field(default_factory=dict)
    session_prefix: str = SESSION_PREFIX

    @property
    def state_file(self) -> Path:
        return self.state_dir / "state.json"

    @property
    def status_dir(self) -> Path:
        return self.state_dir / "status"

    def args_for(self, backend_id: str) -> list[str]:
        """Configured default CLI arguments for a backend."""
        return list(self.backend_args.get(backend_id, []))

    @classmethod
    def from_config(cls, config: Optional[dict] = None, home_dir: Optional[Path] = None) -> "RuntimeContext":
        """
        Build the context from a loaded config dict.

        Raises:
            UnknownBackendError: If ``backends.default`` or ``backends.enabled``
                names a backend that does not exist
        """
        config = config or {}
        home = Path(home_dir) if home_dir else Path.home()

        paths_config = config.get("paths", {})
        state_dir = Path(os.path.expanduser(paths_config.get("state_dir", DEFAULT_STATE_DIR)))

        tmux_config = config.get("tmux", {})
        timeouts = config.get("timeouts", {})
        tmux_timeouts = timeouts.get("tmux", {})
        command_timeout = tmux_timeouts.get("command_seconds", DEFAULT_COMMAND_TIMEOUT)

        hooks_config = config.get("hooks", {})
        ttl_config = hooks_config.get("ttl_seconds", {})
        hook_reader = HookStatusReader(
            state_dir / "status",
            running_ttl=ttl_config.get("running", DEFAULT_RUNNING_TTL),
            other_ttl=ttl_config.get("other", DEFAULT_OTHER_TTL),
        )

        backends_config = config.get("backends", {})
        enabled = backends_config.get("enabled")
        registry = BackendRegistry.build(
            enabled=enabled,
            default_id=backends_config.get("default", DEFAULT_BACKEND_ID),
            hook_reader=hook_reader,
            state_dir=state_dir,
            home_dir=home,
            session_prefix=SESSION_PREFIX,
            command_timeout=command_timeout,
        )
        backend_args = {}
        for backend_id in registry.ids():
            backend_config = backends_config.get(backend_id) or {}
            backend_args[backend_id] = list(backend_config.get("args", []))

        return cls(
            state_dir=state_dir,
            registry=registry,
            hook_reader=hook_reader,
            home_dir=home,
            width=tmux_config.get("width", DEFAULT_WIDTH),
            height=tmux_config.get("height", DEFAULT_HEIGHT),
            command_timeout=command_timeout,
            preview_lines=config.get("preview", {}).get("lines", 5),
            backend_args=backend_args,
        )
