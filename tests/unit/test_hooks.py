"""Unit tests for hook status files and hook installation."""

import json
import os
import tomllib
from pathlib import Path

import pytest

from tickettok.backends import ClaudeBackend, CodexBackend, GeminiBackend
from tickettok.hooks import (
    CLAUDE_HOOK_BODY,
    HookStatusReader,
    clean_hook_status,
    register_codex_notify,
    register_settings_hooks,
    render_hook_script,
    write_hook_status,
)
from tickettok.models import AgentStatus

NOW = 1_700_000_000


@pytest.fixture
def status_dir(tmp_path: Path) -> Path:
    return tmp_path / "status"


@pytest.fixture
def reader(status_dir: Path) -> HookStatusReader:
    return HookStatusReader(status_dir)


class TestHookStatusReader:
    def test_missing_file_is_miss(self, reader):
        assert reader.read("1", now=NOW) is None

    @pytest.mark.parametrize("state", ["RUNNING", "WAITING", "IDLE", "DONE"])
    def test_fresh_record(self, reader, status_dir, state):
        write_hook_status(status_dir, "4", state, ts=NOW - 5)
        assert reader.read("4", now=NOW) == AgentStatus(state)

    def test_running_expires_after_thirty_seconds(self, reader, status_dir):
        write_hook_status(status_dir, "4", "RUNNING", ts=NOW - 30)
        assert reader.read("4", now=NOW) == AgentStatus.RUNNING
        write_hook_status(status_dir, "4", "RUNNING", ts=NOW - 31)
        assert reader.read("4", now=NOW) is None

    @pytest.mark.parametrize("state", ["WAITING", "IDLE", "DONE"])
    def test_other_states_expire_after_five_minutes(self, reader, status_dir, state):
        write_hook_status(status_dir, "4", state, ts=NOW - 299)
        assert reader.read("4", now=NOW) == AgentStatus(state)
        write_hook_status(status_dir, "4", state, ts=NOW - 301)
        assert reader.read("4", now=NOW) is None

    def test_unknown_state_is_miss(self, reader, status_dir):
        write_hook_status(status_dir, "4", "THINKING", ts=NOW)
        assert reader.read("4", now=NOW) is None

    def test_garbage_is_miss(self, reader, status_dir):
        status_dir.mkdir(parents=True)
        (status_dir / "4.json").write_text("{not json")
        assert reader.read("4", now=NOW) is None
        (status_dir / "4.json").write_text('{"state": "IDLE"}')
        assert reader.read("4", now=NOW) is None

    def test_custom_ttls(self, status_dir):
        reader = HookStatusReader(status_dir, running_ttl=5, other_ttl=10)
        write_hook_status(status_dir, "2", "IDLE", ts=NOW - 11)
        assert reader.read("2", now=NOW) is None


def test_write_leaves_no_temp_files(status_dir):
    path = write_hook_status(status_dir, "9", "IDLE", ts=NOW)
    assert json.loads(path.read_text()) == {"state": "IDLE", "ts": NOW}
    assert sorted(p.name for p in status_dir.iterdir()) == ["9.json"]


def test_clean_is_idempotent(status_dir):
    write_hook_status(status_dir, "9", "IDLE")
    clean_hook_status(status_dir, "9")
    assert not (status_dir / "9.json").exists()
    clean_hook_status(status_dir, "9")


def test_render_hook_script(tmp_path):
    script = render_hook_script(CLAUDE_HOOK_BODY, tmp_path / "status", "tickettok_")
    assert script.startswith("#!/bin/bash\n")
    assert f'STATUS_DIR="{tmp_path / "status"}"' in script
    assert '[[ "$SESS" == tickettok_* ]] || exit 0' in script
    assert "permission_prompt) STATE=\"WAITING\"" in script
    assert '"{\\"state\\":\\"$STATE\\",\\"ts\\":$(date +%s)}"' in script


class TestRegisterSettingsHooks:
    def test_creates_file(self, tmp_path):
        settings = tmp_path / ".claude" / "settings.json"
        hook = {"type": "command", "command": "/x/hook.sh", "async": True}
        assert register_settings_hooks(settings, ["Stop", "SessionEnd"], hook) is True

        data = json.loads(settings.read_text())
        assert data["hooks"]["Stop"] == [{"hooks": [hook]}]
        assert data["hooks"]["SessionEnd"] == [{"hooks": [hook]}]

    def test_preserves_existing_settings_and_is_idempotent(self, tmp_path):
        settings = tmp_path / "settings.json"
        existing_hook = {"matcher": "Bash", "hooks": [{"type": "command", "command": "lint.sh"}]}
        settings.write_text(json.dumps({"theme": "dark", "hooks": {"Stop": [existing_hook]}}))
        hook = {"type": "command", "command": "/x/hook.sh"}

        assert register_settings_hooks(settings, ["Stop"], hook, matcher="*") is True
        assert register_settings_hooks(settings, ["Stop"], hook, matcher="*") is False

        data = json.loads(settings.read_text())
        assert data["theme"] == "dark"
        assert data["hooks"]["Stop"] == [existing_hook, {"matcher": "*", "hooks": [hook]}]

    def test_invalid_json_raises(self, tmp_path):
        settings = tmp_path / "settings.json"
        settings.write_text("{oops")
        with pytest.raises(ValueError):
            register_settings_hooks(settings, ["Stop"], {"command": "x"})


class TestRegisterCodexNotify:
    def test_appends_notify(self, tmp_path):
        config = tmp_path / ".codex" / "config.toml"
        config.parent.mkdir()
        config.write_text('model = "o4-mini"\n')
        assert register_codex_notify(config, Path("/x/notify.sh")) is True
        assert config.read_text() == 'model = "o4-mini"\nnotify = ["/x/notify.sh"]\n'
        assert register_codex_notify(config, Path("/x/notify.sh")) is False

    def test_creates_missing_file(self, tmp_path):
        config = tmp_path / ".codex" / "config.toml"
        assert register_codex_notify(config, Path("/x/notify.sh")) is True
        assert config.read_text() == 'notify = ["/x/notify.sh"]\n'

    def test_notify_stays_top_level_when_tables_exist(self, tmp_path):
        config = tmp_path / "config.toml"
        config.write_text(
            'model = "o4-mini"\n'
            "\n"
            "[profiles.fast]\n"
            'model = "gpt-5"\n'
            "\n"
            "[mcp_servers.docs]\n"
            'command = "docs-server"\n'
        )
        assert register_codex_notify(config, Path("/x/notify.sh")) is True

        parsed = tomllib.loads(config.read_text())
        assert parsed["notify"] == ["/x/notify.sh"]
        assert "notify" not in parsed["mcp_servers"]["docs"]
        assert parsed["profiles"]["fast"] == {"model": "gpt-5"}

    def test_similar_key_is_not_notify(self, tmp_path):
        config = tmp_path / "config.toml"
        config.write_text("[tui]\nnotifications = true\n")
        assert register_codex_notify(config, Path("/x/notify.sh")) is True
        parsed = tomllib.loads(config.read_text())
        assert parsed["notify"] == ["/x/notify.sh"]
        assert parsed["tui"] == {"notifications": True}

    def test_existing_notify_is_left_alone(self, tmp_path):
        config = tmp_path / "config.toml"
        config.write_text('notify = ["my-notifier"]\n')
        assert register_codex_notify(config, Path("/x/notify.sh")) is False
        assert config.read_text() == 'notify = ["my-notifier"]\n'

    def test_invalid_toml_raises(self, tmp_path):
        config = tmp_path / "config.toml"
        config.write_text("model = \n")
        with pytest.raises(ValueError):
            register_codex_notify(config, Path("/x/notify.sh"))
        assert config.read_text() == "model = \n"


class TestBackendInstallHooks:
    def test_claude(self, tmp_path):
        backend = ClaudeBackend(state_dir=tmp_path / "state", home_dir=tmp_path / "home")
        backend.install_hooks()

        script = tmp_path / "state" / "tickettok-hook.sh"
        assert script.exists()
        assert os.access(script, os.X_OK)
        data = json.loads((tmp_path / "home" / ".claude" / "settings.json").read_text())
        assert set(data["hooks"]) == {"UserPromptSubmit", "PreToolUse", "Stop", "SessionEnd", "Notification"}
        assert data["hooks"]["Stop"][0]["hooks"][0] == {
            "type": "command", "command": str(script), "async": True,
        }

    def test_gemini(self, tmp_path):
        backend = GeminiBackend(state_dir=tmp_path / "state", home_dir=tmp_path / "home")
        backend.install_hooks()
        backend.install_hooks()

        data = json.loads((tmp_path / "home" / ".gemini" / "settings.json").read_text())
        assert set(data["hooks"]) == {"BeforeAgent", "BeforeTool", "AfterAgent", "Notification", "SessionEnd"}
        entries = data["hooks"]["AfterAgent"]
        assert len(entries) == 1
        assert entries[0]["matcher"] == "*"
        assert entries[0]["hooks"][0]["name"] == "tickettok"

    def test_codex(self, tmp_path):
        backend = CodexBackend(state_dir=tmp_path / "state", home_dir=tmp_path / "home")
        backend.install_hooks()
        script = tmp_path / "state" / "tickettok-codex-notify.sh"
        assert "agent-turn-complete" in script.read_text()
        assert f'notify = ["{script}"]' in (tmp_path / "home" / ".codex" / "config.toml").read_text()

    def test_backend_reads_through_shared_reader(self, tmp_path):
        reader = HookStatusReader(tmp_path / "status")
        backend = ClaudeBackend(hook_reader=reader, state_dir=tmp_path)
        write_hook_status(tmp_path / "status", "3", "WAITING")
        assert backend.read_hook_status("3") == AgentStatus.WAITING
        backend.clean_hook_status("3")
        assert backend.read_hook_status("3") is None
