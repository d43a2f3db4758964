"""HTTP client for a running TicketTok server."""

import json
import os
import urllib.error
import urllib.parse
import urllib.request
from typing import Optional

DEFAULT_API_URL = "http://127.0.0.1:8421"
API_URL_ENV_VAR = "TICKETTOK_API_URL"
API_TIMEOUT = 2  # seconds
SPAWN_TIMEOUT = 30  # spawning waits on tmux and the keep-alive client


def api_url_from_config(config: dict) -> str:
    """$TICKETTOK_API_URL, else the configured server address."""
    if os.environ.get(API_URL_ENV_VAR):
        return os.environ[API_URL_ENV_VAR]
    server = config.get("server", {})
    host = server.get("host", "127.0.0.1")
    port = server.get("port", 8421)
    return f"http://{host}:{port}"


class TicketTokClient:
    """Client for the TicketTok API.

    While ``tickettok serve`` is running it owns ``state.json``; the CLI goes
    through this client so the server's in-memory store stays authoritative.
    """

    def __init__(self, api_url: Optional[str] = None):
        self.api_url = (api_url or DEFAULT_API_URL).rstrip("/")

    def _request(
        self,
        method: str,
        path: str,
        data: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> tuple[Optional[dict], bool, bool]:
        """
        Make an HTTP request.

        Returns:
            Tuple of (response_data, success, unavailable)
            - success=True, unavailable=False: Request succeeded
            - success=False, unavailable=True: Server not reachable
            - success=False, unavailable=False: API error; response_data
              holds the error body (``{"detail": ...}``) when there is one
        """
        url = f"{self.api_url}{path}"
        headers = {"Content-Type": "application/json"}
        body = json.dumps(data).encode() if data is not None else None
        req = urllib.request.Request(url, data=body, headers=headers, method=method)

        try:
            with urllib.request.urlopen(req, timeout=timeout or API_TIMEOUT) as response:
                return json.loads(response.read().decode() or "{}"), True, False
        except urllib.error.HTTPError as e:
            try:
                error_body = json.loads(e.read().decode() or "{}")
            except ValueError:
                error_body = {"detail": e.reason}
            return error_body, False, False
        except (urllib.error.URLError, OSError, ValueError):
            return None, False, True

    @staticmethod
    def _detail(data: Optional[dict], default: str) -> str:
        if data and data.get("detail"):
            return str(data["detail"])
        return default

    def is_available(self) -> bool:
        _, success, _ = self._request("GET", "/health")
        return success

    def list_agents(self) -> Optional[list]:
        data, success, _ = self._request("GET", "/agents?preview_lines=0")
        if success and data:
            return data.get("agents", [])
        return None

    def find_agent(self, ref: str) -> Optional[dict]:
        data, success, _ = self._request("GET", f"/agents/by-name/{urllib.parse.quote(ref, safe='')}")
        return data if success else None

    def spawn_agent(
        self,
        directory: str,
        name: Optional[str] = None,
        backend_id: Optional[str] = None,
        extra_args: Optional[list[str]] = None,
    ) -> tuple[Optional[dict], Optional[str]]:
        """
        Returns:
            (agent, None) on success, (None, error message) otherwise
        """
        data, success, unavailable = self._request(
            "POST",
            "/agents",
            {"dir": directory, "name": name, "backend": backend_id, "args": list(extra_args or [])},
            timeout=SPAWN_TIMEOUT,
        )
        if success:
            return data, None
        if unavailable:
            return None, "TicketTok server unavailable"
        return None, self._detail(data, "spawn failed")

    def kill_agent(self, agent_id: str) -> tuple[bool, bool]:
        """
        Returns:
            Tuple of (success, unavailable)
        """
        _, success, unavailable = self._request("DELETE", f"/agents/{agent_id}")
        return success, unavailable

    def resume_agent(self, agent_id: str, name: Optional[str] = None) -> tuple[Optional[dict], Optional[str]]:
        data, success, unavailable = self._request(
            "POST", f"/agents/{agent_id}/resume", {"name": name}, timeout=SPAWN_TIMEOUT,
        )
        if success:
            return data, None
        if unavailable:
            return None, "TicketTok server unavailable"
        return None, self._detail(data, "resume failed")

    def clear_done(self) -> Optional[int]:
        data, success, _ = self._request("POST", "/agents/clear-done")
        return data.get("removed", 0) if success and data else None

    def discover(self) -> Optional[dict]:
        data, success, _ = self._request("POST", "/discover", timeout=SPAWN_TIMEOUT)
        return data if success else None
