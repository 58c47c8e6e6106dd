"""Tests for the Session class (library API)."""

from io import StringIO

import pytest

from conch.commands import CommandSpec, TableProvider
from conch.context import CommandResult, LogLevel
from conch.report import ConfigError
from conch.session import Session


class TestConstruction:
    def test_defaults(self):
        session = Session(out=StringIO())
        assert session.context.log_level is LogLevel.INFO
        assert [p.label for p in session.registry.ordered()] == ["system", "macros", "sql", "agent"]
        assert session.agent.current_backend_id(session.context) == "openai"
        assert session.agent.current_model(session.context) == "gpt-4o-mini"

    def test_model_override(self):
        session = Session(out=StringIO(), backend="anthropic", model="claude-x")
        assert session.agent.current_model(session.context) == "claude-x"

    def test_bad_log_level(self):
        with pytest.raises(ConfigError, match="unknown log level"):
            Session(out=StringIO(), log_level="loud")

    def test_negative_max_turns(self):
        with pytest.raises(ConfigError, match="max_turns"):
            Session(out=StringIO(), max_turns=-1)

    def test_unknown_backend(self):
        with pytest.raises(ConfigError, match="unknown backend 'llama'"):
            Session(out=StringIO(), backend="llama")

    def test_extra_providers_searched_after_builtins(self):
        calls = []

        def handler(context, cmd):
            calls.append(cmd.name)
            context.print("custom")
            return CommandResult.SUCCESS

        extra = TableProvider("extra", [CommandSpec("custom", handler), CommandSpec("echo", handler)])
        out = StringIO()
        session = Session(out=out, extra_providers=[extra])
        session.run_line("custom")
        session.run_line("echo builtin")
        assert calls == ["custom"]
        assert out.getvalue() == "custom\nbuiltin\n"


class TestRunning:
    def test_run_line_leaves_continuation(self):
        session = Session(out=StringIO())
        session.run_line("select 1")
        assert session.pending_owner == "select"

    def test_run_lines_resets_failure(self):
        session = Session(out=StringIO())
        session.run_line("nosuch")
        assert session.context.failed
        assert session.run_lines(["echo ok"]) is CommandResult.SUCCESS

    def test_interrupt(self):
        session = Session(out=StringIO())
        session.feed("select 1")
        session.interrupt()
        assert session.pending_owner is None
        assert session.context.cancel.requested
