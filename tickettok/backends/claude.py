"""Claude Code backend."""

import logging

from ..hooks import CLAUDE_HOOK_BODY, install_script, register_settings_hooks, render_hook_script
from ..models import AgentStatus
from ..pane_text import clean_line, has_dingbat, has_ellipsis, is_separator_line, recent_lines
from .base import Backend, StatusRule, contains_any, done_rule

logger = logging.getLogger(__name__)

HOOK_EVENTS = ["UserPromptSubmit", "PreToolUse", "Stop", "SessionEnd", "Notification"]

PROMPT_GLYPH = "❯"

WAITING_PATTERNS = (
    "allow once", "allow always",
    "enter to select", "space to select",
    "yes/no/always allow",
    "do you want to proceed",
    "shall i proceed", "should i proceed",
    "approve", "deny", "reject",
    "(y)es", "(n)o", "y/n", "yes/no",
    "ctrl+g to edit",
)

# Key hints printed under a permission or selection prompt
WAITING_HINTS = (
    "esc to cancel", "enter to select", "enter to confirm",
    "tab to amend", "↑/↓", "to navigate", "ctrl+g to edit",
)


def _is_running_line(line: str) -> bool:
    lower = line.lower()
    if "esc to interrupt" in lower or "running…" in lower or "running..." in lower:
        return True
    # Spinner frames are dingbats followed by a status like "Thinking…"
    return has_ellipsis(line) and has_dingbat(line)


def _is_idle_line(line: str) -> bool:
    if line in (">", "$") or PROMPT_GLYPH in line:
        return True
    return contains_any("? for shortcuts", "has completed", "anything else", "can i help")(line)


class ClaudeBackend(Backend):
    id = "claude"
    name = "Claude Code"
    executable = "claude"
    install_hint = "claude (npm install -g @anthropic-ai/claude-code)"
    scan_lines = 15
    # Claude refuses to start nested inside another Claude session
    env_vars_to_strip = ("CLAUDECODE",)
    process_name_prefix = "proc"

    def build_status_rules(self) -> list[StatusRule]:
        return [
            StatusRule(AgentStatus.RUNNING, _is_running_line),
            StatusRule(AgentStatus.WAITING, contains_any(*WAITING_PATTERNS)),
            StatusRule(AgentStatus.IDLE, _is_idle_line),
            done_rule(),
        ]

    def resume_args(self) -> list[str]:
        return ["--continue"]

    def detect_mode(self, pane_text: str) -> str:
        """Return "EDITS", "PLAN" or "" from the status line near the bottom."""
        for line in recent_lines(pane_text, 5):
            lower = line.lower()
            if "exit" in lower:
                continue
            if "accept edits" in lower or "⏵⏵" in line:
                return "EDITS"
            if "plan mode" in lower or ("⏸" in line and "plan" in lower):
                return "PLAN"
        return ""

    def strip_chrome(self, lines: list[str], is_waiting: bool) -> list[str]:
        if is_waiting:
            return self._strip_waiting_chrome(lines)
        return self._strip_prompt_chrome(lines)

    @staticmethod
    def _strip_prompt_chrome(lines: list[str]) -> list[str]:
        """Cut the input box: everything from the separator above the last prompt line."""
        prompt_idx = -1
        for i in range(len(lines) - 1, -1, -1):
            if clean_line(lines[i]).startswith(PROMPT_GLYPH):
                prompt_idx = i
                break
        if prompt_idx < 0:
            return lines
        for i in range(prompt_idx - 1, -1, -1):
            if is_separator_line(clean_line(lines[i])):
                return lines[:i]
        return lines[:prompt_idx]

    @staticmethod
    def _strip_waiting_chrome(lines: list[str]) -> list[str]:
        """Drop separators and the trailing key hint line, keeping the selection UI."""
        filtered = [line for line in lines if not is_separator_line(clean_line(line))]
        for i in range(len(filtered) - 1, -1, -1):
            last = clean_line(filtered[i]).lower()
            if not last:
                continue
            if any(hint in last for hint in WAITING_HINTS):
                del filtered[i]
            break
        return filtered

    @property
    def signatures(self) -> tuple[str, ...]:
        return (
            PROMPT_GLYPH,
            "? for shortcuts",
            "esc to interrupt",
            "claude code",
            "anthropic",
            "allow once",
            "allow always",
        )

    @property
    def hook_script_path(self):
        return self.state_dir / "tickettok-hook.sh"

    def install_hooks(self) -> None:
        script = render_hook_script(CLAUDE_HOOK_BODY, self.status_dir, self.session_prefix)
        install_script(self.hook_script_path, script)
        register_settings_hooks(
            self.home_dir / ".claude" / "settings.json",
            HOOK_EVENTS,
            {"type": "command", "command": str(self.hook_script_path), "async": True},
        )
