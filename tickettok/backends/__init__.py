"""Agent CLI backends."""

from .base import Backend, StatusRule
from .claude import ClaudeBackend
from .codex import CodexBackend
from .gemini import GeminiBackend
from .registry import BackendRegistry, UnknownBackendError

__all__ = [
    "Backend",
    "StatusRule",
    "ClaudeBackend",
    "CodexBackend",
    "GeminiBackend",
    "BackendRegistry",
    "UnknownBackendError",
]
