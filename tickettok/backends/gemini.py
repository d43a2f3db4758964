"""Google Gemini CLI backend."""

from ..hooks import GEMINI_HOOK_BODY, HOOK_NAME, install_script, register_settings_hooks, render_hook_script
from ..models import AgentStatus
from .base import Backend, StatusRule, contains_any, done_rule

HOOK_EVENTS = ["BeforeAgent", "BeforeTool", "AfterAgent", "Notification", "SessionEnd"]

WAITING_PATTERNS = (
    "approve", "deny", "allow",
    "yes/no", "y/n", "(y)es", "(n)o",
    "do you want to proceed",
    "shall i proceed", "should i proceed",
)

# The "Type your message" input box is always on screen
IDLE_PATTERNS = ("type your message", "what would you like", "how can i help", "let me know what")


class GeminiBackend(Backend):
    id = "gemini"
    name = "Gemini"
    executable = "gemini"
    install_hint = "gemini (npm i -g @google/gemini-cli)"
    scan_lines = 20
    process_name_prefix = "gemini"

    def build_status_rules(self) -> list[StatusRule]:
        return [
            StatusRule(AgentStatus.RUNNING, contains_any("esc to cancel")),
            StatusRule(AgentStatus.WAITING, contains_any(*WAITING_PATTERNS)),
            StatusRule(AgentStatus.IDLE, contains_any(*IDLE_PATTERNS)),
            done_rule(),
        ]

    @property
    def signatures(self) -> tuple[str, ...]:
        return ("gemini", "google")

    @property
    def hook_script_path(self):
        return self.state_dir / "tickettok-gemini-hook.sh"

    def install_hooks(self) -> None:
        script = render_hook_script(GEMINI_HOOK_BODY, self.status_dir, self.session_prefix)
        install_script(self.hook_script_path, script)
        register_settings_hooks(
            self.home_dir / ".gemini" / "settings.json",
            HOOK_EVENTS,
            {"name": HOOK_NAME, "type": "command", "command": str(self.hook_script_path)},
            matcher="*",
        )
