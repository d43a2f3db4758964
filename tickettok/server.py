"""FastAPI server exposing agent status and operator actions."""

import asyncio
import logging
import re
import time
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from .actions import (
    ActionError,
    AgentNotFoundError,
    InvalidActionError,
    find_agent,
    kill_agent,
    resume_agent,
    spawn_agent,
)
from .models import Agent

logger = logging.getLogger(__name__)


_AGENT_PATH_RE = re.compile(r"^/agents/(?!by-name/|clear-done$)([^/]+)")


def agent_ref_from_path(path: str) -> Optional[str]:
    """Agent ID addressed by a request path, if any."""
    match = _AGENT_PATH_RE.match(path)
    return match.group(1) if match else None


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Log slow requests, tagged with the agent they address.

    Requests for one agent are slow when its tmux session is; the agent ID
    in the log line points at the session to look at.
    """

    def __init__(self, app, config: Optional[dict] = None):
        super().__init__(app)
        self.config = config or {}

        timeouts = self.config.get("timeouts", {})
        server_timeouts = timeouts.get("server", {})
        self.slow_threshold = server_timeouts.get("slow_request_threshold_seconds", 1.0)
        self.timing_threshold = server_timeouts.get("request_timing_threshold_seconds", 0.1)

    async def dispatch(self, request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        elapsed = time.monotonic() - start

        if elapsed <= self.timing_threshold:
            return response

        path = request.url.path
        agent_id = agent_ref_from_path(path)
        target = f" (agent {agent_id})" if agent_id else ""
        if elapsed > self.slow_threshold:
            logger.warning(
                f"SLOW REQUEST: {request.method} {path}{target} "
                f"took {elapsed:.2f}s, status {response.status_code}"
            )
        else:
            logger.info(f"Request: {request.method} {path}{target} took {elapsed*1000:.0f}ms")

        return response


class SpawnAgentRequest(BaseModel):
    """Request to spawn a new agent."""
    dir: str = "~"
    name: Optional[str] = None
    backend: Optional[str] = None
    args: list[str] = []


class SendInputRequest(BaseModel):
    """Request to type text into an agent's pane."""
    text: str


class ResumeRequest(BaseModel):
    """Optional rename applied before resuming."""
    name: Optional[str] = None


class ResizeRequest(BaseModel):
    cols: int
    rows: int


class AgentResponse(BaseModel):
    """Agent record plus live pane details."""
    id: str
    name: str
    dir: str
    status: str
    backend: str
    created_at: str
    status_since: str
    session_name: str
    discovered: bool
    mode: str = ""
    preview: list[str] = []


def _http_error(e: ActionError) -> HTTPException:
    if isinstance(e, AgentNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidActionError):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def create_app(
    store=None,
    manager=None,
    monitor=None,
    config: Optional[dict] = None,
    lifespan=None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        store: Store instance
        manager: AgentManager instance
        monitor: StatusMonitor instance
        config: Configuration dictionary
        lifespan: Optional ASGI lifespan context manager

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="TicketTok",
        description="Supervise AI coding agents running in tmux",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.config = config or {}
    app.add_middleware(RequestTimingMiddleware, config=config)

    app.state.store = store
    app.state.manager = manager
    app.state.monitor = monitor

    default_preview_lines = app.state.config.get("preview", {}).get("lines", 5)

    def _require():
        if not app.state.store or not app.state.manager:
            raise HTTPException(status_code=503, detail="Agent manager not configured")
        return app.state.store, app.state.manager

    def _get_agent(agent_id: str) -> Agent:
        store, _ = _require()
        agent = store.get(agent_id)
        if not agent:
            raise HTTPException(status_code=404, detail="Agent not found")
        return agent

    def _describe(agent: Agent, preview_lines: int) -> AgentResponse:
        info = app.state.manager.get_pane_info(agent, preview_lines)
        data = agent.to_dict()
        return AgentResponse(**data, mode=info.mode, preview=info.preview)

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {"status": "ok", "service": "tickettok"}

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        monitor_running = bool(app.state.monitor and app.state.monitor.is_running)
        agents = len(app.state.store.list()) if app.state.store else 0
        return {"status": "healthy", "agents": agents, "monitor_running": monitor_running}

    @app.get("/agents")
    async def list_agents(preview_lines: int = Query(default=default_preview_lines, ge=0, le=100)):
        """List agents with status, mode and preview."""
        store, _ = _require()

        def collect():
            return [_describe(a, preview_lines) for a in store.list()]

        agents = await asyncio.to_thread(collect)
        return {"agents": agents}

    @app.get("/agents/{agent_id}", response_model=AgentResponse)
    async def get_agent(agent_id: str, preview_lines: int = Query(default=default_preview_lines, ge=0, le=100)):
        """Get one agent."""
        agent = _get_agent(agent_id)
        return await asyncio.to_thread(_describe, agent, preview_lines)

    @app.post("/agents", response_model=AgentResponse, status_code=201)
    async def create_agent(request: SpawnAgentRequest):
        """Spawn a new agent in its own tmux session."""
        store, manager = _require()
        try:
            agent = await asyncio.to_thread(
                spawn_agent,
                store,
                manager,
                manager.context.registry,
                request.dir,
                request.name,
                request.backend,
                request.args,
            )
        except ActionError as e:
            raise _http_error(e)
        return AgentResponse(**agent.to_dict())

    @app.delete("/agents/{agent_id}")
    async def delete_agent(agent_id: str):
        """Kill an agent and forget it."""
        store, manager = _require()
        agent = _get_agent(agent_id)
        killed = await asyncio.to_thread(kill_agent, store, manager, agent)
        return {"status": "killed", "agent_id": agent_id, "session_killed": killed}

    @app.post("/agents/clear-done")
    async def clear_done():
        """Remove every DONE agent from the store."""
        store, _ = _require()
        removed = store.clear_done()
        return {"removed": removed}

    @app.post("/agents/{agent_id}/input")
    async def send_input(agent_id: str, request: SendInputRequest):
        """Type text into the agent's pane and press Enter."""
        _, manager = _require()
        agent = _get_agent(agent_id)
        ok = await asyncio.to_thread(manager.send_keys, agent, request.text)
        if not ok:
            raise HTTPException(status_code=409, detail="Agent session is not running")
        return {"status": "sent", "agent_id": agent_id}

    @app.post("/agents/{agent_id}/resize")
    async def resize_agent(agent_id: str, request: ResizeRequest):
        """Resize a managed agent's window."""
        _, manager = _require()
        if request.cols <= 0 or request.rows <= 0:
            raise HTTPException(status_code=400, detail="cols and rows must be positive")
        agent = _get_agent(agent_id)
        if agent.discovered:
            raise HTTPException(status_code=400, detail="External sessions are not resized")
        ok = await asyncio.to_thread(manager.set_size, agent, request.cols, request.rows)
        if not ok:
            raise HTTPException(status_code=409, detail="Agent session is not running")
        return {"status": "resized", "cols": request.cols, "rows": request.rows}

    @app.post("/agents/{agent_id}/resume", response_model=AgentResponse)
    async def resume(agent_id: str, request: Optional[ResumeRequest] = None):
        """Respawn a dead agent with its backend's resume arguments."""
        store, manager = _require()
        agent = _get_agent(agent_id)
        name = request.name if request else None
        try:
            agent = await asyncio.to_thread(resume_agent, store, manager, agent, name)
        except ActionError as e:
            raise _http_error(e)
        return AgentResponse(**agent.to_dict())

    @app.post("/discover")
    async def discover():
        """Run discovery now and merge the results."""
        _require()
        if not app.state.monitor:
            raise HTTPException(status_code=503, detail="Status monitor not configured")
        added = await asyncio.to_thread(app.state.monitor.run_discovery)
        return {
            "added": [a.to_dict() for a in added],
            "message": app.state.monitor.last_message,
        }

    @app.get("/agents/by-name/{ref}", response_model=AgentResponse)
    async def lookup_agent(ref: str):
        """Find an agent by ID or name."""
        store, _ = _require()
        try:
            agent = find_agent(store, ref)
        except ActionError as e:
            raise _http_error(e)
        return AgentResponse(**agent.to_dict())

    return app
