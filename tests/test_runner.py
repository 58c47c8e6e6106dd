"""Tests for conch.runner: dispatch, line sequences, scripts and interactive feeding."""

from io import StringIO

from conch.commands import CommandSpec, Param, TableProvider
from conch.context import (
    CommandResult,
    Continuation,
    ContinuationResult,
    ExecutionContext,
)
from conch.registry import ProviderRegistry
from conch.runner import (
    LineSequence,
    dispatch_line,
    read_script,
    run_interactive_line,
    run_lines,
    run_script,
)


class _Recorder:
    """Tiny provider: ``rec`` records lines, ``boom`` raises, ``bad`` fails, ``collect`` continues."""

    def __init__(self):
        self.lines: list[str] = []
        self.provider = TableProvider(
            "recorder",
            [
                CommandSpec("rec", self._rec, (Param("words", optional=True, variadic=True),)),
                CommandSpec("boom", self._boom),
                CommandSpec("bad", self._bad),
                CommandSpec("soft", self._soft),
                CommandSpec("bye", lambda context, cmd: CommandResult.EXIT),
                CommandSpec("collect", self._collect, (Param("words", optional=True, variadic=True),)),
            ],
        )

    def _rec(self, context, cmd, *words):
        self.lines.append(cmd.tail)
        return CommandResult.SUCCESS

    def _boom(self, context, cmd):
        raise RuntimeError("kaboom")

    def _bad(self, context, cmd):
        return CommandResult.FAILURE

    def _soft(self, context, cmd):
        context.error("logged only")
        return CommandResult.SUCCESS

    def _collect(self, context, cmd, *words):
        # "collect" with no args waits for lines until "done", then runs "collect <joined>".
        if words:
            self.lines.append("collected " + " ".join(words))
            return CommandResult.SUCCESS
        buffer = []

        def on_line(line, ctx):
            if line.strip() == "done":
                return ContinuationResult.execute_and_end(" ".join(buffer))
            buffer.append(line.strip())
            return ContinuationResult.continue_without_execution()

        context.continue_with(Continuation("collect", on_line))
        return CommandResult.SUCCESS


def _context():
    recorder = _Recorder()
    context = ExecutionContext(StringIO(), ProviderRegistry([recorder.provider]))
    return context, recorder


class TestDispatchLine:
    def test_blank_is_success(self):
        context, _ = _context()
        assert dispatch_line(context, "   ") is CommandResult.SUCCESS

    def test_unknown_command(self):
        context, _ = _context()
        assert dispatch_line(context, "nope 1") is CommandResult.FAILURE
        assert "Unknown command: nope" in context.out.getvalue()

    def test_exception_becomes_failure(self):
        context, _ = _context()
        assert dispatch_line(context, "boom") is CommandResult.FAILURE
        assert "Command failed: kaboom" in context.out.getvalue()
        assert isinstance(context.last_exception, RuntimeError)

    def test_logged_error_counts_as_failure(self):
        context, _ = _context()
        assert dispatch_line(context, "soft") is CommandResult.FAILURE

    def test_failure_flag_is_sticky(self):
        context, _ = _context()
        dispatch_line(context, "bad")
        assert dispatch_line(context, "rec a") is CommandResult.SUCCESS
        assert context.failed

    def test_exit_propagates(self):
        context, _ = _context()
        assert dispatch_line(context, "bye") is CommandResult.EXIT


class TestLineSequence:
    def test_continuation_collects_then_executes(self):
        context, recorder = _context()
        sequence = LineSequence(context)
        for line in ["collect", "a", "b", "done"]:
            assert sequence.feed(line) is CommandResult.SUCCESS
        assert recorder.lines == ["collected a b"]
        assert not sequence.pending

    def test_blank_line_without_continuation_is_noop(self):
        context, recorder = _context()
        assert LineSequence(context).feed("") is CommandResult.SUCCESS
        assert recorder.lines == []

    def test_handler_returning_none_keeps_going(self):
        context, _ = _context()
        seen = []

        def handler(line, ctx):
            seen.append(line)
            return None

        sequence = LineSequence(context, active=Continuation("rec", handler))
        sequence.feed("x")
        sequence.feed("y")
        assert seen == ["x", "y"]
        assert sequence.pending

    def test_continuation_not_visible_in_context_slot(self):
        context, _ = _context()
        sequence = LineSequence(context)
        sequence.feed("collect")
        assert context.continuation is None
        assert sequence.active.owner == "collect"


class TestRunLines:
    def test_runs_in_order(self):
        context, recorder = _context()
        assert run_lines(context, ["rec 1", "rec 2"]) is CommandResult.SUCCESS
        assert recorder.lines == ["1", "2"]

    def test_stops_at_first_failure(self):
        context, recorder = _context()
        assert run_lines(context, ["rec 1", "bad", "rec 2"]) is CommandResult.FAILURE
        assert recorder.lines == ["1"]

    def test_stops_at_exit(self):
        context, recorder = _context()
        assert run_lines(context, ["bye", "rec 2"]) is CommandResult.EXIT
        assert recorder.lines == []

    def test_unfinished_continuation_fails(self):
        context, _ = _context()
        assert run_lines(context, ["collect", "a"], label="Macro") is CommandResult.FAILURE
        assert "Macro ended before continuation completed." in context.out.getvalue()

    def test_caller_continuation_restored(self):
        context, recorder = _context()
        outer = Continuation("rec", lambda line, ctx: ContinuationResult.end())
        context.continue_with(outer)
        run_lines(context, ["collect", "a", "done"])
        assert context.continuation is outer
        assert recorder.lines == ["collected a"]

    def test_caller_continuation_restored_after_failure(self):
        context, _ = _context()
        outer = Continuation("rec", lambda line, ctx: ContinuationResult.end())
        context.continue_with(outer)
        run_lines(context, ["boom"])
        assert context.continuation is outer


class TestScripts:
    def test_comments_dropped(self, tmp_path):
        script = tmp_path / "s.conch"
        script.write_text("# header\nrec a\n  # indented\nrec b\n", encoding="utf-8")
        assert read_script(script) == ["rec a", "rec b"]

    def test_run_script(self, tmp_path):
        context, recorder = _context()
        script = tmp_path / "s.conch"
        script.write_text("collect\nx\ndone\nrec y\n", encoding="utf-8")
        assert run_script(context, script) is CommandResult.SUCCESS
        assert recorder.lines == ["collected x", "y"]

    def test_missing_script(self, tmp_path):
        context, _ = _context()
        assert run_script(context, tmp_path / "missing") is CommandResult.FAILURE
        assert "Cannot read script" in context.out.getvalue()


class TestInteractive:
    def test_continuation_persists_between_lines(self):
        context, recorder = _context()
        run_interactive_line(context, "collect")
        assert context.continuation.owner == "collect"
        run_interactive_line(context, "a")
        run_interactive_line(context, "done")
        assert context.continuation is None
        assert recorder.lines == ["collected a"]

    def test_blank_line_leaves_continuation(self):
        context, recorder = _context()
        run_interactive_line(context, "collect")
        assert run_interactive_line(context, "") is CommandResult.SUCCESS
        assert context.continuation is None
        run_interactive_line(context, "rec z")
        assert recorder.lines == ["z"]

    def test_failure_clears_continuation(self):
        context, _ = _context()
        context.continue_with(
            Continuation("bad", lambda line, ctx: ContinuationResult.execute_and_continue(line))
        )
        assert run_interactive_line(context, "x") is CommandResult.FAILURE
        assert context.continuation is None

    def test_failure_flag_reset_per_line(self):
        context, _ = _context()
        run_interactive_line(context, "bad")
        assert run_interactive_line(context, "rec ok") is CommandResult.SUCCESS
        assert not context.failed
