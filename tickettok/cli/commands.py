"""Command implementations for the tickettok CLI."""

import os
import sys
from typing import Optional

from ..actions import (
    ActionError,
    AgentNotFoundError,
    find_agent,
    install_all_hooks,
    kill_agent,
    resume_agent,
    spawn_agent,
)
from ..agent_manager import AgentManager
from ..backends.registry import BackendRegistry
from ..discovery import discover_all, discovery_summary, merge_discovered
from ..models import DiscoveredAgent
from ..store import Store
from .client import TicketTokClient


def shorten_path(path: str) -> str:
    """Replace the home directory prefix with ~."""
    home = os.path.expanduser("~")
    if path == home:
        return "~"
    if path.startswith(home + os.sep):
        return "~" + path[len(home):]
    return path


def format_table(headers: list[str], rows: list[list[str]]) -> str:
    """Left-aligned columns separated by two spaces."""
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))
    lines = []
    for row in [headers] + rows:
        lines.append("  ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)).rstrip())
    return "\n".join(lines)


def _print_spawned(name: str, agent_id: str, session_name: str, directory: str) -> None:
    print(f'Spawned agent "{name}" (ID: {agent_id}, session: {session_name}) in {directory}')


def cmd_add(
    store: Optional[Store],
    manager: Optional[AgentManager],
    registry: BackendRegistry,
    directory: str,
    name: Optional[str] = None,
    backend_id: Optional[str] = None,
    extra_args: Optional[list[str]] = None,
    client: Optional[TicketTokClient] = None,
) -> int:
    """
    Spawn an agent in a new tmux session.

    With a client the running server spawns it; otherwise the store and
    manager are used directly.

    Exit codes:
        0: Spawned
        1: Spawn failed
    """
    if client is not None:
        # The server resolves paths against its own cwd
        directory = os.path.abspath(os.path.expanduser(directory or "~"))
        data, error = client.spawn_agent(directory, name, backend_id, extra_args)
        if error:
            print(f"Failed to spawn agent: {error}", file=sys.stderr)
            return 1
        _print_spawned(data["name"], data["id"], data.get("session_name", ""), data["dir"])
        return 0

    try:
        agent = spawn_agent(store, manager, registry, directory, name, backend_id, extra_args)
    except ActionError as e:
        print(f"Failed to spawn agent: {e}", file=sys.stderr)
        return 1
    _print_spawned(agent.name, agent.id, agent.session_name, agent.dir)
    return 0


def cmd_list(store: Optional[Store], client: Optional[TicketTokClient] = None) -> int:
    """Print every stored agent."""
    if client is not None:
        records = client.list_agents()
        if records is None:
            print("Failed to list agents (server unavailable)", file=sys.stderr)
            return 1
    else:
        records = [a.to_dict() for a in store.list()]

    if not records:
        print("No agents.")
        return 0

    rows = []
    for r in records:
        name = f"{r['name']}*" if r.get("discovered") else r["name"]
        rows.append([r["id"], name, r["status"], r["backend"], shorten_path(r["dir"]), r.get("session_name", "")])
    print(format_table(["ID", "NAME", "STATUS", "BACKEND", "DIR", "SESSION"], rows))
    return 0


def cmd_kill(
    store: Optional[Store],
    manager: Optional[AgentManager],
    target: str,
    client: Optional[TicketTokClient] = None,
) -> int:
    """
    Kill an agent by ID or name.

    Exit codes:
        0: Killed
        1: Agent not found or kill failed
    """
    if client is not None:
        record = client.find_agent(target)
        if record is None:
            print(f"Agent not found: {target}", file=sys.stderr)
            return 1
        success, unavailable = client.kill_agent(record["id"])
        if not success:
            reason = "server unavailable" if unavailable else "API error"
            print(f"Failed to kill agent {record['id']} ({reason})", file=sys.stderr)
            return 1
        print(f'Killed agent "{record["name"]}" (ID: {record["id"]})')
        return 0

    try:
        agent = find_agent(store, target)
    except ActionError:
        print(f"Agent not found: {target}", file=sys.stderr)
        return 1
    kill_agent(store, manager, agent)
    print(f'Killed agent "{agent.name}" (ID: {agent.id})')
    return 0


def cmd_resume(
    store: Optional[Store],
    manager: Optional[AgentManager],
    target: str,
    name: Optional[str] = None,
    client: Optional[TicketTokClient] = None,
) -> int:
    """
    Bring a dead agent back, optionally under a new name.

    Exit codes:
        0: Resumed (or already running)
        1: Agent not found or resume failed
    """
    if client is not None:
        record = client.find_agent(target)
        if record is None:
            print(f"Agent not found: {target}", file=sys.stderr)
            return 1
        data, error = client.resume_agent(record["id"], name)
        if error:
            print(f"Failed to resume agent: {error}", file=sys.stderr)
            return 1
        print(f'Resumed agent "{data["name"]}" (ID: {data["id"]})')
        return 0

    try:
        agent = find_agent(store, target)
        resume_agent(store, manager, agent, name=name)
    except AgentNotFoundError:
        print(f"Agent not found: {target}", file=sys.stderr)
        return 1
    except ActionError as e:
        print(f"Failed to resume agent: {e}", file=sys.stderr)
        return 1
    print(f'Resumed agent "{agent.name}" (ID: {agent.id})')
    return 0


def _format_candidates(found: list[DiscoveredAgent]) -> str:
    rows = []
    for d in found:
        ident = str(d.pid) if d.pid else d.session_name
        rows.append([d.source, d.backend_id, d.name, d.dir, ident])
    return format_table(["SOURCE", "BACKEND", "NAME", "DIR", "SESSION/PID"], rows)


def cmd_discover(
    store: Optional[Store],
    registry: BackendRegistry,
    merge: bool = False,
    client: Optional[TicketTokClient] = None,
) -> int:
    """List agent CLIs running outside TicketTok; optionally start tracking them."""
    found = discover_all(registry)
    if not found:
        print("No running agent instances found.")
        return 0

    print(_format_candidates(found))
    if not merge:
        return 0

    print()
    if client is not None:
        data = client.discover()
        if data is None:
            print("Failed to merge discovered agents (server unavailable)", file=sys.stderr)
            return 1
        print(data.get("message", ""))
        return 0

    added = merge_discovered(store, found)
    print(discovery_summary(store, added))
    return 0


def cmd_clear(store: Optional[Store], client: Optional[TicketTokClient] = None) -> int:
    """Remove all DONE agents."""
    if client is not None:
        removed = client.clear_done()
        if removed is None:
            print("Failed to clear agents (server unavailable)", file=sys.stderr)
            return 1
    else:
        removed = store.clear_done()
    print(f"Cleared {removed} done agent(s).")
    return 0



def cmd_install_hooks(registry: BackendRegistry) -> int:
    """
    Install status hooks for every enabled backend.

    Exit codes:
        0: All installed
        1: At least one backend failed
    """
    results = install_all_hooks(registry)
    failed = 0
    for backend_id, error in results.items():
        if error:
            failed += 1
            print(f"{backend_id}: failed ({error})", file=sys.stderr)
        else:
            print(f"{backend_id}: installed")
    return 1 if failed else 0


def cmd_check_deps(registry: BackendRegistry) -> int:
    """Report missing agent CLIs."""
    missing = [hint for hint in (b.check_deps() for b in registry) if hint]
    if not missing:
        print("All agent CLIs found.")
        return 0
    print("Missing agent CLIs:", file=sys.stderr)
    for hint in missing:
        print(f"  {hint}", file=sys.stderr)
    return 1
