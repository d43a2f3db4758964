"""Periodic status refresh and discovery loop."""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from .agent_manager import AgentManager
from .backends.registry import BackendRegistry
from .discovery import (
    DEFAULT_PRUNE_GRACE_SECONDS,
    discover_all,
    discovery_summary,
    merge_discovered,
    prune_discovered,
    reconcile_discovered,
)
from .models import Agent, AgentStatus
from .store import Store

logger = logging.getLogger(__name__)


class StatusMonitor:
    """Drives status detection for every stored agent.

    Each tick runs in a worker thread because detection shells out to tmux.
    Every ``discover_every`` ticks the tick also runs discovery and merges
    the results into the store.
    """

    def __init__(
        self,
        store: Store,
        manager: AgentManager,
        registry: BackendRegistry,
        poll_interval: float = 2.0,
        discover_every: int = 5,
        prune_grace_seconds: float = DEFAULT_PRUNE_GRACE_SECONDS,
        config: Optional[dict] = None,
    ):
        self.store = store
        self.manager = manager
        self.registry = registry
        self.config = config or {}

        monitor_config = self.config.get("monitor", {})
        self.poll_interval = monitor_config.get("poll_interval", poll_interval)
        self.discover_every = monitor_config.get("discover_every", discover_every)
        self.prune_grace_seconds = monitor_config.get("prune_grace_seconds", prune_grace_seconds)

        self._status_callback: Optional[Callable[[str, AgentStatus], Awaitable[None]]] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self.tick_count = 0
        self.last_message = ""

    def set_status_callback(self, callback: Callable[[str, AgentStatus], Awaitable[None]]):
        """Set the callback invoked after an agent's status changes."""
        self._status_callback = callback

    @property
    def is_running(self) -> bool:
        return self._running

    def refresh_statuses(self) -> list[tuple[str, AgentStatus]]:
        """
        Detect status for every agent and persist changes, then prune expired
        discovered agents.

        Returns:
            (agent_id, new_status) for each change
        """
        changes = []
        for agent in self.store.list():
            try:
                status = self.manager.detect_status(agent)
            except Exception as e:
                logger.error(f"Status detection failed for agent {agent.id}: {e}")
                continue
            if status != agent.status and self.store.update_status(agent.id, status):
                logger.info(f"Agent {agent.id} ({agent.name}): {status.value}")
                changes.append((agent.id, status))

        for agent in prune_discovered(self.store, self.prune_grace_seconds, now=datetime.now()):
            logger.info(f"Pruned discovered agent {agent.id} ({agent.name})")
        return changes

    def run_discovery(self) -> list[Agent]:
        """Discover external agents, merge them, and record a summary message."""
        added = merge_discovered(self.store, discover_all(self.registry))
        self.last_message = discovery_summary(self.store, added)
        return added

    async def tick(self) -> list[tuple[str, AgentStatus]]:
        """Run one refresh (and discovery when due) off the event loop."""
        changes = await asyncio.to_thread(self.refresh_statuses)
        self.tick_count += 1
        if self.discover_every and self.tick_count % self.discover_every == 0:
            await asyncio.to_thread(self.run_discovery)

        if self._status_callback:
            for agent_id, status in changes:
                try:
                    await self._status_callback(agent_id, status)
                except Exception as e:
                    logger.error(f"Status callback failed for agent {agent_id}: {e}")
        return changes

    async def start(self):
        """Reconcile once, then start the periodic loop."""
        if self._task is not None:
            logger.warning("Status monitor already running")
            return
        await asyncio.to_thread(reconcile_discovered, self.store)
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            f"Status monitor started (every {self.poll_interval}s, "
            f"discovery every {self.discover_every} ticks)"
        )

    async def stop(self):
        """Stop the loop and wait for the current tick to finish."""
        self._running = False
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Status monitor stopped")

    async def _loop(self):
        while self._running:
            try:
                await asyncio.sleep(self.poll_interval)
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Status monitor tick failed: {e}")
