"""Unit tests for tmux command wrappers and the session handle."""

import subprocess
from unittest.mock import MagicMock, call, patch

import pytest

from tickettok.tmux_controller import (
    SessionCaptureError,
    SessionCreationError,
    TmuxSession,
    build_program,
    capture_pane_plain,
    kill_session_by_name,
    list_panes,
    list_sessions,
    session_exists,
    session_name_for,
)


def _completed(stdout="", returncode=0):
    return subprocess.CompletedProcess(args=["tmux"], returncode=returncode, stdout=stdout, stderr="")


@pytest.fixture
def run():
    with patch("tickettok.tmux_controller.subprocess.run") as mock_run:
        mock_run.return_value = _completed()
        yield mock_run


@pytest.fixture
def keepalive():
    with patch("tickettok.tmux_controller.KeepAliveClient") as client_cls:
        yield client_cls.return_value


def _tmux_calls(run):
    return [c.args[0][1:] for c in run.call_args_list]


def test_session_name_for():
    assert session_name_for("12") == "tickettok_12"


def test_build_program():
    assert build_program("claude") == "claude"
    assert build_program("claude --continue", ["CLAUDECODE"]) == "env -u CLAUDECODE claude --continue"


class TestSessionExists:
    def test_exit_status(self, run):
        assert session_exists("work") is True
        run.return_value = _completed(returncode=1)
        assert session_exists("work") is False

    def test_empty_name_skips_tmux(self, run):
        assert session_exists("") is False
        run.assert_not_called()

    def test_errors_mean_missing(self, run):
        run.side_effect = FileNotFoundError("tmux")
        assert session_exists("work") is False
        run.side_effect = subprocess.TimeoutExpired("tmux", 5)
        assert session_exists("work") is False


def test_capture_pane_plain(run):
    run.return_value = _completed("hello\n")
    assert capture_pane_plain("work") == "hello\n"
    assert _tmux_calls(run) == [["capture-pane", "-p", "-J", "-t", "work"]]

    run.side_effect = subprocess.CalledProcessError(1, "tmux")
    with pytest.raises(SessionCaptureError):
        capture_pane_plain("work")


class TestKillSessionByName:
    def test_missing_session_is_success(self, run):
        run.return_value = _completed(returncode=1)
        assert kill_session_by_name("tickettok_1") is True
        assert _tmux_calls(run) == [["has-session", "-t", "tickettok_1"]]

    def test_kills_live_session(self, run):
        assert kill_session_by_name("tickettok_1") is True
        assert _tmux_calls(run)[-1] == ["kill-session", "-t", "tickettok_1"]

    def test_failure(self, run):
        run.side_effect = [_completed(), subprocess.CalledProcessError(1, "tmux", stderr="denied")]
        assert kill_session_by_name("tickettok_1") is False


def test_list_sessions(run):
    run.return_value = _completed("tickettok_1\nwork\n\n")
    assert list_sessions() == ["tickettok_1", "work"]
    run.return_value = _completed(returncode=1)
    assert list_sessions() == []


class TestListPanes:
    def test_parses_rows(self, run):
        run.return_value = _completed("work|/home/me/my project|claude\nlogs|/var/log|tail\n")
        with patch("tickettok.tmux_controller.tmux_available", return_value=True):
            panes = list_panes()
        assert [(p.session_name, p.path, p.command) for p in panes] == [
            ("work", "/home/me/my project", "claude"),
            ("logs", "/var/log", "tail"),
        ]

    def test_falls_back_to_list_sessions(self, run):
        run.side_effect = [_completed(returncode=1), _completed("work|/srv|node\n")]
        with patch("tickettok.tmux_controller.tmux_available", return_value=True):
            panes = list_panes()
        assert _tmux_calls(run)[1][0] == "list-sessions"
        assert panes[0].path == "/srv"

    def test_no_tmux(self, run):
        with patch("tickettok.tmux_controller.tmux_available", return_value=False):
            assert list_panes() == []
        run.assert_not_called()


class TestTmuxSession:
    def test_create_starts_detached_session_and_attaches(self, run, keepalive):
        session = TmuxSession.create(
            "tickettok_1", "/tmp/webapp", "claude", env_vars_to_strip=["CLAUDECODE"], width=120, height=40,
        )

        calls = _tmux_calls(run)
        assert calls[0] == [
            "new-session", "-d", "-s", "tickettok_1", "-x", "120", "-y", "40",
            "-c", "/tmp/webapp", "env -u CLAUDECODE claude",
        ]
        assert calls[1] == ["set-option", "-t", "tickettok_1", "window-size", "manual"]
        assert calls[2] == ["resize-window", "-t", "tickettok_1", "-x", "120", "-y", "40"]
        keepalive.attach.assert_called_once()
        assert session.name == "tickettok_1"

    def test_create_failure(self, run, keepalive):
        run.side_effect = subprocess.CalledProcessError(1, "tmux", stderr="duplicate session: tickettok_1")
        with pytest.raises(SessionCreationError, match="duplicate session"):
            TmuxSession.create("tickettok_1", "/tmp", "claude")
        keepalive.attach.assert_not_called()

    def test_attach_failure_kills_session(self, run, keepalive):
        keepalive.attach.side_effect = OSError("out of ptys")
        with pytest.raises(SessionCreationError):
            TmuxSession.create("tickettok_1", "/tmp", "claude")
        assert ["kill-session", "-t", "tickettok_1"] in _tmux_calls(run)

    def test_capture_pane_content(self, run, keepalive):
        run.return_value = _completed("\x1b[1mhi\x1b[0m\n")
        session = TmuxSession("tickettok_1")
        assert session.capture_pane_content() == "\x1b[1mhi\x1b[0m\n"
        session.capture_pane_content(history_lines=100)
        assert _tmux_calls(run) == [
            ["capture-pane", "-p", "-e", "-J", "-t", "tickettok_1"],
            ["capture-pane", "-p", "-e", "-J", "-S", "-100", "-t", "tickettok_1"],
        ]

    def test_capture_failure_raises(self, run, keepalive):
        run.side_effect = subprocess.CalledProcessError(1, "tmux", stderr="can't find session")
        with pytest.raises(SessionCaptureError):
            TmuxSession("tickettok_1").capture_pane_content()

    def test_send_keys_types_literal_text_then_enter(self, run, keepalive):
        assert TmuxSession("tickettok_1").send_keys("fix -the tests") is True
        assert _tmux_calls(run) == [
            ["send-keys", "-t", "tickettok_1", "-l", "--", "fix -the tests"],
            ["send-keys", "-t", "tickettok_1", "Enter"],
        ]

    def test_send_keys_does_not_expand_key_names(self, run, keepalive):
        TmuxSession("tickettok_1").send_keys("Enter")
        assert _tmux_calls(run)[0] == ["send-keys", "-t", "tickettok_1", "-l", "--", "Enter"]

    def test_send_keys_failure(self, run, keepalive):
        run.side_effect = subprocess.CalledProcessError(1, "tmux", stderr="no session")
        assert TmuxSession("tickettok_1").send_keys("hi") is False

    def test_set_size(self, run, keepalive):
        session = TmuxSession("tickettok_1")
        assert session.set_size(100, 30) is True
        keepalive.set_size.assert_called_once_with(100, 30)
        assert (session.width, session.height) == (100, 30)

    def test_kill_detaches_then_kills(self, run, keepalive):
        session = TmuxSession("tickettok_1")
        assert session.kill() is True
        keepalive.detach.assert_called_once()
        assert _tmux_calls(run)[-1] == ["kill-session", "-t", "tickettok_1"]

    def test_detach_keeps_session(self, run, keepalive):
        TmuxSession("tickettok_1").detach()
        keepalive.detach.assert_called_once()
        run.assert_not_called()


class TestKeepAliveClient:
    def test_attach_spawns_tmux_client_in_pty(self):
        from tickettok.keepalive import KeepAliveClient

        proc = MagicMock(pid=4242)
        proc.poll.return_value = None
        with patch("tickettok.keepalive.pty.openpty", return_value=(10, 11)), \
                patch("tickettok.keepalive._set_winsize") as set_winsize, \
                patch("tickettok.keepalive.subprocess.Popen", return_value=proc) as popen, \
                patch("tickettok.keepalive.os.close") as close, \
                patch("tickettok.keepalive.os.read", return_value=b""), \
                patch.dict("os.environ", {"CLAUDECODE": "1"}):
            client = KeepAliveClient("tickettok_1", cols=80, rows=24, strip_env_vars=["CLAUDECODE"])
            client.attach()
            client.attach()

            assert client.attached
            assert popen.call_count == 1
            assert popen.call_args.args[0] == ["tmux", "attach-session", "-d", "-t", "tickettok_1"]
            assert popen.call_args.kwargs["start_new_session"] is True
            assert "preexec_fn" not in popen.call_args.kwargs
            env = popen.call_args.kwargs["env"]
            assert "CLAUDECODE" not in env
            assert env["TERM"] == "xterm-256color"
            set_winsize.assert_called_once_with(11, 80, 24)

            client.detach()
            client.detach()

        assert not client.attached
        assert call(11) in close.call_args_list
        assert call(10) in close.call_args_list
        proc.send_signal.assert_called_once()
