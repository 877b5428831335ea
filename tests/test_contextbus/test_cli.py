"""Tests for the contextbus CLI commands."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from contextbus import __version__
from contextbus.cli.main import cli
from contextbus.cli.replay import ScriptError, load_script, run_script
from contextbus.registry import ListenerRegistry


def _write_script(tmp_path: Path, ops: list) -> str:
    path = tmp_path / "script.json"
    path.write_text(json.dumps(ops), encoding="utf-8")
    return str(path)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep CONTEXTBUS_* settings from the host out of replay defaults."""
    monkeypatch.delenv("CONTEXTBUS_IDENTIFIER_SCOPE", raising=False)
    monkeypatch.delenv("CONTEXTBUS_ISOLATE_ERRORS", raising=False)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


class TestCLIGroup:
    def test_cli_group_help(self) -> None:
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "synchronous event dispatcher" in result.output
        assert "replay" in result.output

    def test_version(self) -> None:
        runner = CliRunner()
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


# ---------------------------------------------------------------------------
# replay command
# ---------------------------------------------------------------------------


class TestReplayCommand:
    def test_replay_help_shows_options(self) -> None:
        runner = CliRunner()
        result = runner.invoke(cli, ["replay", "--help"])
        assert result.exit_code == 0
        assert "--scope" in result.output
        assert "--isolate-errors" in result.output

    def test_replay_broadcasts_in_order(self, tmp_path: Path) -> None:
        script = _write_script(
            tmp_path,
            [
                {"op": "subscribe", "event": "ping", "listener": "cb1", "identifier": "one"},
                {"op": "subscribe", "event": "ping", "listener": "cb2", "identifier": "two"},
                {"op": "broadcast", "event": "ping"},
                {"op": "broadcast", "event": "ping", "payload": {"x": 1}},
            ],
        )
        runner = CliRunner()
        result = runner.invoke(cli, ["replay", script])
        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert lines[0] == "subscribed cb1 to ping as one"
        assert lines[1] == "subscribed cb2 to ping as two"
        assert lines[2:8] == [
            "broadcast ping",
            "  cb1()",
            "  cb2()",
            "broadcast ping",
            '  cb1({"x": 1})',
            '  cb2({"x": 1})',
        ]
        assert "Done: 4 operation(s), 2 listener(s) still subscribed" in result.output

    def test_replay_contexts_and_unsubscribe(self, tmp_path: Path) -> None:
        script = _write_script(
            tmp_path,
            [
                {"op": "subscribe", "event": "ping", "listener": "a", "context": "room"},
                {"op": "subscribe", "event": "ping", "listener": "b"},
                {"op": "broadcast", "event": "ping", "context": "room"},
                {"op": "unsubscribe", "event": "ping", "listener": "a", "context": "room"},
                {"op": "broadcast", "event": "ping", "context": "room"},
            ],
        )
        runner = CliRunner()
        result = runner.invoke(cli, ["replay", script])
        assert result.exit_code == 0
        assert result.output.count("  a()") == 1
        assert "  b()" not in result.output
        assert "unsubscribed 1 listener(s) from ping in 'room'" in result.output

    def test_replay_duplicate_identifier_exits_1(self, tmp_path: Path) -> None:
        script = _write_script(
            tmp_path,
            [
                {"op": "subscribe", "event": "ping", "listener": "a", "identifier": "dup"},
                {"op": "subscribe", "event": "ping", "listener": "b", "identifier": "dup"},
            ],
        )
        runner = CliRunner()
        result = runner.invoke(cli, ["replay", script])
        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "unsubscribe it first" in result.output

    def test_replay_registry_scope(self, tmp_path: Path) -> None:
        script = _write_script(
            tmp_path,
            [
                {"op": "subscribe", "event": "ping", "listener": "a", "identifier": "dup"},
                {"op": "subscribe", "event": "pong", "listener": "b", "identifier": "dup"},
            ],
        )
        runner = CliRunner()
        assert runner.invoke(cli, ["replay", script]).exit_code == 0
        result = runner.invoke(cli, ["replay", "--scope", "registry", script])
        assert result.exit_code == 1

    def test_replay_failing_listener(self, tmp_path: Path) -> None:
        script = _write_script(
            tmp_path,
            [
                {"op": "subscribe", "event": "ping", "listener": "bad", "fail": True},
                {"op": "subscribe", "event": "ping", "listener": "good"},
                {"op": "broadcast", "event": "ping"},
            ],
        )
        runner = CliRunner()
        result = runner.invoke(cli, ["replay", script])
        assert result.exit_code == 1
        assert "Listener error: listener 'bad' failed" in result.output
        assert "  good()" not in result.output

        result = runner.invoke(cli, ["replay", "--isolate-errors", script])
        assert result.exit_code == 0
        assert "  good()" in result.output

    def test_replay_malformed_script(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        runner = CliRunner()
        result = runner.invoke(cli, ["replay", str(path)])
        assert result.exit_code == 1
        assert "Script error: invalid JSON" in result.output

    def test_replay_missing_file(self) -> None:
        runner = CliRunner()
        result = runner.invoke(cli, ["replay", "does-not-exist.json"])
        assert result.exit_code != 0

    def test_replay_rejects_directory(self, tmp_path: Path) -> None:
        runner = CliRunner()
        result = runner.invoke(cli, ["replay", str(tmp_path)])
        assert result.exit_code == 2
        assert not isinstance(result.exception, IsADirectoryError)

    def test_replay_scope_from_environment(self, tmp_path: Path, monkeypatch) -> None:
        script = _write_script(
            tmp_path,
            [
                {"op": "subscribe", "event": "ping", "listener": "a", "identifier": "dup"},
                {"op": "subscribe", "event": "pong", "listener": "b", "identifier": "dup"},
            ],
        )
        monkeypatch.setenv("CONTEXTBUS_IDENTIFIER_SCOPE", "registry")
        runner = CliRunner()
        assert runner.invoke(cli, ["replay", script]).exit_code == 1
        assert runner.invoke(cli, ["replay", "--scope", "context", script]).exit_code == 0

    def test_replay_isolation_from_environment(self, tmp_path: Path, monkeypatch) -> None:
        script = _write_script(
            tmp_path,
            [
                {"op": "subscribe", "event": "ping", "listener": "bad", "fail": True},
                {"op": "subscribe", "event": "ping", "listener": "good"},
                {"op": "broadcast", "event": "ping"},
            ],
        )
        monkeypatch.setenv("CONTEXTBUS_ISOLATE_ERRORS", "1")
        runner = CliRunner()
        result = runner.invoke(cli, ["replay", script])
        assert result.exit_code == 0
        assert "  good()" in result.output


# ---------------------------------------------------------------------------
# Script helpers
# ---------------------------------------------------------------------------


class TestLoadScript:
    def test_rejects_non_list(self, tmp_path: Path) -> None:
        path = tmp_path / "s.json"
        path.write_text('{"op": "broadcast"}', encoding="utf-8")
        with pytest.raises(ScriptError):
            load_script(path)

    def test_loads_operations(self, tmp_path: Path) -> None:
        path = Path(_write_script(tmp_path, [{"op": "broadcast", "event": "x"}]))
        assert load_script(path) == [{"op": "broadcast", "event": "x"}]


class TestRunScript:
    def test_conflicting_fail_flag(self) -> None:
        ops = [
            {"op": "subscribe", "event": "x", "listener": "a"},
            {"op": "subscribe", "event": "y", "listener": "a", "fail": True},
        ]
        with pytest.raises(ScriptError, match="listener 'a' was first subscribed"):
            run_script(ops, ListenerRegistry(), lambda line: None)

    def test_same_fail_flag_reuses_listener(self) -> None:
        registry = ListenerRegistry()
        ops = [
            {"op": "subscribe", "event": "x", "listener": "a", "fail": True},
            {"op": "subscribe", "event": "x", "listener": "a", "fail": True},
        ]
        run_script(ops, registry, lambda line: None)
        first, second = registry.listeners("x")
        assert first.callback is second.callback

    def test_unknown_op(self) -> None:
        with pytest.raises(ScriptError, match="unknown op 'emit'"):
            run_script([{"op": "emit", "event": "x"}], ListenerRegistry(), lambda line: None)

    def test_missing_event(self) -> None:
        with pytest.raises(ScriptError, match="missing 'event'"):
            run_script([{"op": "broadcast"}], ListenerRegistry(), lambda line: None)

    def test_listener_and_identifier_are_exclusive(self) -> None:
        ops = [{"op": "unsubscribe", "event": "x", "listener": "a", "identifier": "b"}]
        with pytest.raises(ScriptError):
            run_script(ops, ListenerRegistry(), lambda line: None)

    def test_unsubscribe_by_identifier_and_all(self) -> None:
        out: list[str] = []
        registry = ListenerRegistry()
        run_script(
            [
                {"op": "subscribe", "event": "x", "listener": "a", "identifier": "first"},
                {"op": "subscribe", "event": "x", "listener": "a", "identifier": "second"},
                {"op": "subscribe", "event": "x", "listener": "b"},
                {"op": "unsubscribe", "event": "x", "identifier": "first"},
                {"op": "unsubscribe", "event": "x"},
                {"op": "unsubscribe", "event": "x", "listener": "never"},
            ],
            registry,
            out.append,
        )
        assert out[3:] == [
            "unsubscribed 1 listener(s) from x",
            "unsubscribed 2 listener(s) from x",
            "unsubscribed 0 listener(s) from x",
        ]
        assert len(registry) == 0

    def test_null_payload_is_delivered(self) -> None:
        out: list[str] = []
        run_script(
            [
                {"op": "subscribe", "event": "x", "listener": "a"},
                {"op": "broadcast", "event": "x", "payload": None},
            ],
            ListenerRegistry(),
            out.append,
        )
        assert out[-1] == "  a(null)"
