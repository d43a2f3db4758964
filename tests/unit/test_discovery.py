"""Unit tests for discovery merging, reconciliation and pruning."""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from tickettok.discovery import (
    discover_all,
    discovery_summary,
    merge_discovered,
    prune_discovered,
    reconcile_discovered,
)
from tickettok.models import AgentStatus, DiscoveredAgent


def _tmux_find(session="work", name="claude-work", dir="/home/me/work", backend_id="claude"):
    return DiscoveredAgent(name=name, dir=dir, session_name=session, backend_id=backend_id)


class TestMergeDiscovered:
    def test_adds_new_sessions(self, store):
        added = merge_discovered(store, [_tmux_find(), _tmux_find("api", "codex-api", "/srv/api", "codex")])

        assert [a.session_name for a in added] == ["work", "api"]
        assert all(a.discovered for a in added)
        assert store.get_by_session("api").backend_id == "codex"

    def test_second_merge_adds_nothing(self, store):
        found = [_tmux_find()]
        merge_discovered(store, found)
        assert merge_discovered(store, found) == []
        assert len(store.list()) == 1

    def test_process_only_finds_are_skipped(self, store):
        found = [DiscoveredAgent(name="proc-4242", dir="/x", pid=4242, backend_id="claude")]
        assert merge_discovered(store, found) == []
        assert store.list() == []

    def test_missing_backend_falls_back_to_default(self, store):
        merge_discovered(store, [_tmux_find(backend_id="")])
        assert store.get_by_session("work").backend_id == "claude"

    def test_done_agent_on_reused_session_is_revived(self, store):
        agent = store.add("old", "/old", session_name="work")
        store.update_status(agent.id, AgentStatus.DONE)

        added = merge_discovered(store, [_tmux_find()])

        assert added == []
        revived = store.get(agent.id)
        assert revived.status == AgentStatus.RUNNING
        assert revived.discovered is True
        assert len(store.list()) == 1

    def test_live_agent_is_left_alone(self, store):
        agent = store.add("mine", "/mine", session_name="tickettok_1")
        store.update_status(agent.id, AgentStatus.IDLE)
        merge_discovered(store, [_tmux_find(session="tickettok_1")])
        assert store.get(agent.id).status == AgentStatus.IDLE
        assert store.get(agent.id).discovered is False


class TestDiscoverySummary:
    def test_messages(self, store):
        assert discovery_summary(store, []) == "No external agent sessions found"
        added = merge_discovered(store, [_tmux_find()])
        assert discovery_summary(store, added) == "Discovered 1 new agent(s)"
        assert discovery_summary(store, []) == "No new agents (1 external tracked)"


def test_discover_all_skips_failing_backend():
    good = MagicMock(id="claude")
    good.discover.return_value = [_tmux_find()]
    bad = MagicMock(id="codex")
    bad.discover.side_effect = OSError("pgrep missing")

    found = discover_all([bad, good])

    assert [f.session_name for f in found] == ["work"]


def test_reconcile_marks_vanished_sessions_done(store):
    gone = store.add("gone", "/g", session_name="gone", discovered=True)
    alive = store.add("alive", "/a", session_name="alive", discovered=True)
    ours = store.add("ours", "/o", session_name="tickettok_3")

    ended = reconcile_discovered(store, exists=lambda name: name == "alive")

    assert [a.id for a in ended] == [gone.id]
    assert store.get(gone.id).status == AgentStatus.DONE
    assert store.get(alive.id).status == AgentStatus.RUNNING
    assert store.get(ours.id).status == AgentStatus.RUNNING


@pytest.mark.parametrize("age, pruned", [(10, False), (31, True)])
def test_prune_respects_grace_window(store, age, pruned):
    agent = store.add("ext", "/e", session_name="ext", discovered=True)
    store.update_status(agent.id, AgentStatus.DONE)
    now = store.get(agent.id).status_since + timedelta(seconds=age)

    result = prune_discovered(store, grace_seconds=30, now=now)

    assert bool(result) is pruned
    assert (store.get(agent.id) is None) is pruned


def test_prune_never_touches_spawned_agents(store):
    agent = store.add("mine", "/m", session_name="tickettok_1")
    store.update_status(agent.id, AgentStatus.DONE)
    assert prune_discovered(store, grace_seconds=0, now=datetime.now() + timedelta(hours=1)) == []
    assert store.get(agent.id) is not None
