"""Tests for the fmt module (ANSI-formatted stderr helpers)."""

from io import StringIO

from rich.console import Console

from conch import fmt


def _capture(func, *args, **kwargs):
    """Call a fmt function with a captured console and return plain-text output."""
    buf = StringIO()
    old = fmt._console
    fmt._console = Console(file=buf, no_color=True, width=80)
    try:
        func(*args, **kwargs)
    finally:
        fmt._console = old
    return buf.getvalue()


class TestTurnHeader:
    def test_contains_turn_info(self):
        out = _capture(fmt.turn_header, 3, 10, 4200, "ChatGPT")
        assert "ChatGPT turn 3/10" in out
        assert "4200 tokens" in out

    def test_unlimited(self):
        out = _capture(fmt.turn_header, 7, 0, 10, "Claude")
        assert "turn 7/-" in out


class TestLlmTiming:
    def test_stop_reason(self):
        out = _capture(fmt.llm_timing, 1.4, "stop")
        assert "model responded in 1.4s" in out
        assert "finish_reason=stop" in out

    def test_length_reason(self):
        out = _capture(fmt.llm_timing, 2.3, "length")
        assert "finish_reason=length" in out


class TestLoopBreaker:
    def test_counts_calls(self):
        out = _capture(fmt.loop_breaker, "Gemini", ["a", "b"])
        assert "Loop breaker" in out
        assert "Gemini repeated 2 tool call(s)" in out


class TestDiagnostics:
    def test_info(self):
        assert _capture(fmt.info, "Wrote file").strip() == "Wrote file"

    def test_error(self):
        out = _capture(fmt.error, "bad config")
        assert "Error: bad config" in out

    def test_banner(self):
        assert "Interactive mode" in _capture(fmt.repl_banner)


class TestInit:
    def test_no_color(self):
        old = fmt._console
        try:
            fmt.init(no_color=True)
            assert fmt._console.no_color
        finally:
            fmt._console = old

    def test_force_color(self):
        old = fmt._console
        try:
            fmt.init(color=True)
            assert fmt._console.is_terminal
        finally:
            fmt._console = old
