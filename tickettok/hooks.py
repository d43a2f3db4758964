"""Hook-written status files and hook installation for agent CLIs.

Agent CLIs run a small shell script on lifecycle events. The script finds its
tmux session name, maps the event to a status and writes
``<status_dir>/<agent_id>.json`` as ``{"state": ..., "ts": ...}``. Reading
these files is the fast path for status detection; every record expires so a
hook that stops firing falls back to pane scraping.
"""

import json
import logging
import os
import re
import stat
import tempfile
import time
import tomllib
from pathlib import Path
from typing import Optional

from .models import AgentStatus, HookRecord

logger = logging.getLogger(__name__)

DEFAULT_RUNNING_TTL = 30
DEFAULT_OTHER_TTL = 300

HOOK_NAME = "tickettok"

# Each script is rendered with the status directory and session prefix
_SCRIPT_HEADER = """#!/bin/bash
set -euo pipefail
"""

_SCRIPT_SESSION_GUARD = """SESS=$(tmux display-message -p '#{session_name}' 2>/dev/null || true)
[[ "$SESS" == __PREFIX__* ]] || exit 0
AGENT_ID="${SESS#__PREFIX__}"
STATUS_DIR="__STATUS_DIR__"
mkdir -p "$STATUS_DIR"
STATE=""
"""

_SCRIPT_WRITE = """[ -z "$STATE" ] && exit 0
TMP=$(mktemp "$STATUS_DIR/.tmp.XXXXXX")
echo "{\\"state\\":\\"$STATE\\",\\"ts\\":$(date +%s)}" > "$TMP"
mv "$TMP" "$STATUS_DIR/${AGENT_ID}.json"
"""

CLAUDE_HOOK_BODY = """INPUT=$(cat)
EVENT=$(echo "$INPUT" | jq -r '.hook_event_name // empty')
NTYPE=$(echo "$INPUT" | jq -r '.notification_type // empty')
""" + _SCRIPT_SESSION_GUARD + """case "$EVENT" in
  UserPromptSubmit|PreToolUse) STATE="RUNNING" ;;
  Stop) STATE="IDLE" ;;
  SessionEnd) STATE="DONE" ;;
  Notification)
    case "$NTYPE" in
      permission_prompt) STATE="WAITING" ;;
      idle_prompt) STATE="IDLE" ;;
    esac ;;
esac
"""

GEMINI_HOOK_BODY = """INPUT=$(cat)
EVENT=$(echo "$INPUT" | jq -r '.hook_event_name // empty')
""" + _SCRIPT_SESSION_GUARD + """case "$EVENT" in
  BeforeAgent|BeforeTool) STATE="RUNNING" ;;
  AfterAgent) STATE="IDLE" ;;
  Notification) STATE="WAITING" ;;
  SessionEnd) STATE="DONE" ;;
esac
"""

# Codex passes the notification JSON as the first argument
CODEX_NOTIFY_BODY = """EVENT_TYPE=$(echo "$1" | jq -r '.type // empty')
""" + _SCRIPT_SESSION_GUARD + """case "$EVENT_TYPE" in
  agent-turn-complete) STATE="IDLE" ;;
esac
"""


def render_hook_script(body: str, status_dir: Path, session_prefix: str) -> str:
    """Build a complete hook script from one of the ``*_BODY`` templates."""
    text = _SCRIPT_HEADER + body + _SCRIPT_WRITE
    return text.replace("__STATUS_DIR__", str(status_dir)).replace("__PREFIX__", session_prefix)


def _status_path(status_dir: Path, agent_id: str) -> Path:
    return Path(status_dir) / f"{agent_id}.json"


class HookStatusReader:
    """Reads hook status files and applies per-state expiry."""

    def __init__(
        self,
        status_dir: Path,
        running_ttl: int = DEFAULT_RUNNING_TTL,
        other_ttl: int = DEFAULT_OTHER_TTL,
    ):
        self.status_dir = Path(status_dir)
        self.running_ttl = running_ttl
        self.other_ttl = other_ttl

    def ttl_for(self, status: AgentStatus) -> int:
        # RUNNING is refreshed on every tool call, so a quiet RUNNING record goes stale fast
        if status == AgentStatus.RUNNING:
            return self.running_ttl
        return self.other_ttl

    def read(self, agent_id: str, now: Optional[float] = None) -> Optional[AgentStatus]:
        """
        Return the hook-reported status, or None on a cache miss.

        A missing, unreadable or malformed file, an unknown state and an
        expired record are all misses.
        """
        path = _status_path(self.status_dir, agent_id)
        try:
            with open(path) as f:
                data = json.load(f)
            record = HookRecord(state=str(data["state"]), ts=int(data["ts"]))
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.debug(f"Ignoring hook status for agent {agent_id}: {e}")
            return None

        try:
            status = AgentStatus(record.state)
        except ValueError:
            return None

        age = (now if now is not None else time.time()) - record.ts
        if age > self.ttl_for(status):
            return None
        return status


def write_hook_status(status_dir: Path, agent_id: str, state: str, ts: Optional[int] = None) -> Path:
    """Atomically write a hook status record (temp file + rename)."""
    status_dir = Path(status_dir)
    status_dir.mkdir(parents=True, exist_ok=True)
    record = HookRecord(state=state, ts=int(ts if ts is not None else time.time()))
    path = _status_path(status_dir, agent_id)
    fd, tmp_name = tempfile.mkstemp(prefix=".tmp.", dir=status_dir)
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(record.to_dict(), f)
        os.replace(tmp_name, path)
    except OSError:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    return path


def clean_hook_status(status_dir: Path, agent_id: str) -> None:
    """Remove an agent's hook status file. A missing file is not an error."""
    path = _status_path(status_dir, agent_id)
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove hook status {path}: {e}")


def install_script(path: Path, content: str) -> None:
    """Write an executable script, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    logger.info(f"Installed hook script {path}")


def _load_json_settings(settings_path: Path) -> dict:
    if not settings_path.exists():
        return {}
    with open(settings_path) as f:
        text = f.read()
    if not text.strip():
        return {}
    settings = json.loads(text)
    if not isinstance(settings, dict):
        raise ValueError(f"{settings_path} does not contain a JSON object")
    return settings


def hook_command_registered(settings: dict, command: str) -> bool:
    """True if any hook entry in ``settings`` already runs ``command``."""
    hooks = settings.get("hooks")
    if not isinstance(hooks, dict):
        return False
    for entries in hooks.values():
        if not isinstance(entries, list):
            continue
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            for hook in entry.get("hooks") or []:
                if isinstance(hook, dict) and hook.get("command") == command:
                    return True
    return False


def register_settings_hooks(
    settings_path: Path,
    events: list[str],
    hook: dict,
    matcher: Optional[str] = None,
) -> bool:
    """
    Add ``hook`` under each event in a JSON settings file.

    Args:
        settings_path: The agent CLI's settings.json
        events: Event names to register for
        hook: Hook object, must contain ``command``
        matcher: Optional matcher for each entry

    Returns:
        True if the file was modified, False if already registered

    Raises:
        OSError: If the file cannot be read or written
        ValueError: If the existing file is not valid JSON
    """
    settings_path = Path(settings_path)
    settings = _load_json_settings(settings_path)
    if hook_command_registered(settings, hook["command"]):
        return False

    hooks = settings.get("hooks")
    if not isinstance(hooks, dict):
        hooks = {}
    for event in events:
        entry: dict = {"hooks": [dict(hook)]}
        if matcher is not None:
            entry = {"matcher": matcher, **entry}
        existing = hooks.get(event)
        if not isinstance(existing, list):
            existing = []
        existing.append(entry)
        hooks[event] = existing
    settings["hooks"] = hooks

    settings_path.parent.mkdir(parents=True, exist_ok=True)
    with open(settings_path, "w") as f:
        json.dump(settings, f, indent=2)
    logger.info(f"Registered {HOOK_NAME} hooks in {settings_path}")
    return True


_TABLE_HEADER_RE = re.compile(r"^\s*\[\[?[A-Za-z0-9_.\"' -]+\]\]?\s*(#.*)?$")


def _notify_commands(value) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(v) for v in value]
    return []


def register_codex_notify(config_path: Path, script_path: Path) -> bool:
    """
    Set ``notify = ["<script>"]`` in a Codex config.toml.

    The key is top-level, so it goes above the first ``[table]`` header;
    appended at the end it would land inside whatever table comes last.
    A ``notify`` the user already configured is left alone.

    Returns:
        True if the file was modified

    Raises:
        ValueError: If the existing file is not valid TOML
    """
    config_path = Path(config_path)
    content = config_path.read_text() if config_path.exists() else ""
    config = tomllib.loads(content)

    if "notify" in config:
        if str(script_path) in _notify_commands(config["notify"]):
            return False
        logger.warning(f"{config_path} already configures notify; not registering {script_path}")
        return False

    entry = f"notify = [{json.dumps(str(script_path))}]\n"
    lines = content.splitlines(keepends=True)
    for i, line in enumerate(lines):
        if _TABLE_HEADER_RE.match(line):
            lines.insert(i, entry)
            break
    else:
        if lines and not lines[-1].endswith("\n"):
            lines[-1] += "\n"
        lines.append(entry)
    updated = "".join(lines)

    if tomllib.loads(updated).get("notify") != [str(script_path)]:
        raise ValueError(f"could not place notify in {config_path}")

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(updated)
    logger.info(f"Registered Codex notify hook in {config_path}")
    return True
