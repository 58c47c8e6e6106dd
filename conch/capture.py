"""Run one command in a forked context and capture what it prints."""

import logging
from dataclasses import dataclass
from io import StringIO

from .context import CommandResult, Continuation, ExecutionContext
from .parser import parse_line

logger = logging.getLogger(__name__)

TOOL_INDENT = " " * 6


class IndentingWriter:
    """Text sink that prefixes every line written through it."""

    def __init__(self, out, indent: str = TOOL_INDENT):
        self.out = out
        self.indent = indent
        self._line_start = True

    def write(self, text: str) -> int:
        for chunk in text.splitlines(keepends=True):
            if self._line_start:
                self.out.write(self.indent)
            self.out.write(chunk)
            self._line_start = chunk.endswith("\n")
        return len(text)

    def flush(self) -> None:
        self.out.flush()


class TeeWriter:
    """Duplicates writes to a screen sink and a capture sink.

    The capture leg can be switched off while a rendered grid goes to the
    screen, since the render tap writes its own unclipped copy.
    """

    def __init__(self, screen, capture):
        self.screen = screen
        self.capture = capture
        self.capture_enabled = True

    def set_capture_enabled(self, enabled: bool) -> None:
        self.capture_enabled = enabled

    def write(self, text: str) -> int:
        self.screen.write(text)
        if self.capture_enabled:
            self.capture.write(text)
        return len(text)

    def flush(self) -> None:
        self.screen.flush()
        if self.capture_enabled:
            self.capture.flush()


@dataclass
class ToolResult:
    output: str
    success: bool
    continuation: Continuation | None = None
    exit: bool = False

    @classmethod
    def failure(cls, output: str) -> "ToolResult":
        return cls(output, False)


def _scaled(size: int, numerator: int, denominator: int) -> int:
    if size <= 0:
        return 0
    return max(1, size * numerator // denominator)


def run_captured(
    context: ExecutionContext, line: str, allow_continuation: bool = True
) -> ToolResult:
    """Execute exactly one command line in a sandboxed fork of ``context``.

    Output goes to the screen indented and into the returned buffer. An
    exception raised by the command is recorded and reported as a failed
    result, never propagated.
    """
    cmd = parse_line(line)
    if cmd is None:
        return ToolResult.failure("No command provided.")
    registry = context.registry
    executable = registry.find(cmd) if registry is not None else None
    if executable is None:
        return ToolResult.failure(f"Unknown command: {cmd.name}")

    buffer = StringIO()
    writer = TeeWriter(IndentingWriter(context.out), buffer)
    child = context.fork(writer)
    child.set_size(_scaled(context.width, 3, 4), _scaled(context.height, 1, 2))
    child.clip_frames = True
    child.set_render_tap(buffer, 0, 0, False)
    child.allow_continuation = allow_continuation
    child.reset_failure()

    result = None
    try:
        result = executable(child)
        if result is CommandResult.FAILURE:
            child.fail()
    except Exception as e:
        logger.debug("captured command %r raised", cmd.name, exc_info=True)
        child.record_exception(e)
        child.error(f"Command failed: {str(e) or type(e).__name__}")
    finally:
        writer.flush()
    return ToolResult(
        output=buffer.getvalue(),
        success=not child.failed,
        continuation=child.continuation,
        exit=result is CommandResult.EXIT,
    )
