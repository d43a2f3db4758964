"""Backend lookup with an explicit default."""

import logging
from typing import Iterator, Optional

from .base import Backend
from .claude import ClaudeBackend
from .codex import CodexBackend
from .gemini import GeminiBackend

logger = logging.getLogger(__name__)

BACKEND_CLASSES: dict[str, type[Backend]] = {
    ClaudeBackend.id: ClaudeBackend,
    CodexBackend.id: CodexBackend,
    GeminiBackend.id: GeminiBackend,
}

DEFAULT_BACKEND_ID = ClaudeBackend.id


class UnknownBackendError(KeyError):
    """No backend is registered under the requested id."""


class BackendRegistry:
    """Ordered set of backend instances, one of which is the default."""

    def __init__(self, backends: list[Backend], default_id: str = DEFAULT_BACKEND_ID):
        if not backends:
            raise ValueError("at least one backend is required")
        self._backends: dict[str, Backend] = {}
        for backend in backends:
            self._backends[backend.id] = backend
        if default_id not in self._backends:
            raise UnknownBackendError(default_id)
        self.default_id = default_id

    def __iter__(self) -> Iterator[Backend]:
        return iter(self._backends.values())

    def __len__(self) -> int:
        return len(self._backends)

    def __contains__(self, backend_id: str) -> bool:
        return backend_id in self._backends

    @property
    def default(self) -> Backend:
        return self._backends[self.default_id]

    def ids(self) -> list[str]:
        return list(self._backends)

    def get(self, backend_id: str) -> Backend:
        """Look up a backend by id. Raises UnknownBackendError."""
        try:
            return self._backends[backend_id]
        except KeyError:
            raise UnknownBackendError(backend_id) from None

    def resolve(self, backend_id: Optional[str]) -> Backend:
        """Backend for an agent record; empty or unknown ids map to the default."""
        if backend_id and backend_id in self._backends:
            return self._backends[backend_id]
        if backend_id:
            logger.warning(f"Unknown backend '{backend_id}', using {self.default_id}")
        return self.default

    @classmethod
    def build(
        cls,
        enabled: Optional[list[str]] = None,
        default_id: str = DEFAULT_BACKEND_ID,
        **backend_kwargs,
    ) -> "BackendRegistry":
        """Instantiate the enabled backends (all known ones when ``enabled`` is None)."""
        ids = enabled or list(BACKEND_CLASSES)
        backends = []
        for backend_id in ids:
            backend_cls = BACKEND_CLASSES.get(backend_id)
            if backend_cls is None:
                raise UnknownBackendError(backend_id)
            backends.append(backend_cls(**backend_kwargs))
        return cls(backends, default_id=default_id)
