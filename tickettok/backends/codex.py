"""OpenAI Codex CLI backend."""

from ..hooks import CODEX_NOTIFY_BODY, install_script, register_codex_notify, render_hook_script
from ..models import AgentStatus
from .base import Backend, StatusRule, contains_any, done_rule

WAITING_PATTERNS = (
    "approve", "deny", "allow",
    "yes/no", "y/n", "(y)es", "(n)o",
    "do you want to proceed",
    "permission",
)


def _is_idle_line(line: str) -> bool:
    # The "tokens used" status bar stays visible while running, so RUNNING is checked first
    if line in (">", "$"):
        return True
    return contains_any("tokens used", "what would you like", "how can i help")(line)


class CodexBackend(Backend):
    id = "codex"
    name = "Codex"
    executable = "codex"
    install_hint = "codex (npm i -g @openai/codex)"
    scan_lines = 20
    process_name_prefix = "codex"

    def build_status_rules(self) -> list[StatusRule]:
        return [
            StatusRule(AgentStatus.RUNNING, contains_any("esc to interrupt")),
            StatusRule(AgentStatus.WAITING, contains_any(*WAITING_PATTERNS)),
            StatusRule(AgentStatus.IDLE, _is_idle_line),
            done_rule(),
        ]

    @property
    def signatures(self) -> tuple[str, ...]:
        return ("codex", "openai")

    @property
    def notify_script_path(self):
        return self.state_dir / "tickettok-codex-notify.sh"

    def install_hooks(self) -> None:
        script = render_hook_script(CODEX_NOTIFY_BODY, self.status_dir, self.session_prefix)
        install_script(self.notify_script_path, script)
        register_codex_notify(self.home_dir / ".codex" / "config.toml", self.notify_script_path)
