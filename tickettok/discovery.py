"""Discovery of agents started outside TicketTok, and bookkeeping for them."""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from .backends.registry import BackendRegistry
from .models import Agent, AgentStatus, DiscoveredAgent
from .store import Store
from .tmux_controller import session_exists

logger = logging.getLogger(__name__)

DEFAULT_PRUNE_GRACE_SECONDS = 30


def discover_all(registry: BackendRegistry) -> list[DiscoveredAgent]:
    """Union of every backend's discovery results.

    A backend that fails is logged and skipped.
    """
    found: list[DiscoveredAgent] = []
    for backend in registry:
        try:
            found.extend(backend.discover())
        except Exception as e:
            logger.warning(f"Discovery failed for {backend.id}: {e}")
    logger.debug(f"Discovery found {len(found)} candidates")
    return found


def merge_discovered(store: Store, found: list[DiscoveredAgent]) -> list[Agent]:
    """
    Merge discovery results into the store, keyed by tmux session name.

    - Unknown session name: add a new discovered agent.
    - Known session whose agent is DONE: revive it as RUNNING and discovered
      (tmux reused the name after the previous process exited).
    - Known session whose agent is live: nothing to do.

    Process-only candidates have no session to bind and are never merged.

    Returns:
        Agents added by this merge
    """
    added: list[Agent] = []
    for candidate in found:
        if not candidate.session_name:
            continue
        match = store.get_by_session(candidate.session_name)
        if match is not None:
            if match.status == AgentStatus.DONE:
                store.update_status(match.id, AgentStatus.RUNNING)
                store.update_discovered(match.id, True)
                logger.info(f"Revived agent {match.id} on reused session {candidate.session_name}")
            continue
        agent = store.add(
            candidate.name,
            candidate.dir,
            backend_id=candidate.backend_id or None,
            session_name=candidate.session_name,
            discovered=True,
        )
        added.append(agent)
    if added:
        logger.info(f"Discovered {len(added)} new agent(s)")
    return added


def discovery_summary(store: Store, added: list[Agent]) -> str:
    """One-line operator message describing a discovery pass."""
    if added:
        return f"Discovered {len(added)} new agent(s)"
    external = [a for a in store.list() if a.discovered and a.status != AgentStatus.DONE]
    if external:
        return f"No new agents ({len(external)} external tracked)"
    return "No external agent sessions found"


def reconcile_discovered(
    store: Store,
    exists: Optional[Callable[[str], bool]] = None,
) -> list[Agent]:
    """Mark discovered agents DONE when their tmux session has gone away.

    Returns:
        Agents that were marked DONE
    """
    exists = exists or session_exists
    ended = []
    for agent in store.list():
        if agent.discovered and agent.status != AgentStatus.DONE and not exists(agent.session_name):
            store.update_status(agent.id, AgentStatus.DONE)
            ended.append(agent)
    if ended:
        logger.info(f"Reconciled {len(ended)} vanished discovered agent(s)")
    return ended


def prune_discovered(
    store: Store,
    grace_seconds: float = DEFAULT_PRUNE_GRACE_SECONDS,
    now: Optional[datetime] = None,
) -> list[Agent]:
    """Remove discovered agents that have been DONE for longer than the grace window.

    Agents spawned by TicketTok are never pruned.
    """
    now = now or datetime.now()
    cutoff = timedelta(seconds=grace_seconds)
    pruned = []
    for agent in store.list():
        if agent.discovered and agent.status == AgentStatus.DONE and now - agent.status_since > cutoff:
            if store.remove(agent.id):
                pruned.append(agent)
    return pruned
