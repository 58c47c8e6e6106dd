"""Line dispatch and the continuation-aware line-sequence runner.

Every driver (REPL, script file, macro body, agent tool block) feeds its lines
through ``LineSequence``; they differ only in how one line is executed and in
what happens on failure or at the end of input.
"""

import logging
from pathlib import Path
from typing import Callable, Iterable

from .context import CommandResult, Continuation, ExecutionContext
from .parser import parse_line

logger = logging.getLogger(__name__)

# Executes one command line and returns its status plus whatever continuation
# the command installed.
Step = Callable[[str], tuple[CommandResult, Continuation | None]]


def dispatch_line(context: ExecutionContext, line: str) -> CommandResult:
    """Parse, resolve and execute one line against ``context``.

    This is the single exception boundary for command execution: anything a
    command raises is recorded as the last exception and reported as FAILURE.
    The context's failure flag stays sticky across the call.
    """
    cmd = parse_line(line)
    if cmd is None:
        return CommandResult.SUCCESS
    registry = context.registry
    executable = registry.find(cmd) if registry is not None else None
    if executable is None:
        context.error(f"Unknown command: {cmd.name}")
        return CommandResult.FAILURE

    was_failed = context.failed
    context.failed = False
    try:
        result = executable(context)
    except Exception as e:
        logger.debug("command %r raised", cmd.name, exc_info=True)
        context.record_exception(e)
        context.error(f"Command failed: {str(e) or type(e).__name__}")
        context.debug(context.format_traceback(e))
        result = CommandResult.FAILURE
    failed = result is CommandResult.FAILURE or context.failed
    context.failed = was_failed or failed
    if result is CommandResult.EXIT:
        return CommandResult.EXIT
    return CommandResult.FAILURE if failed else CommandResult.SUCCESS


def in_place(context: ExecutionContext) -> Step:
    """Step that runs lines directly on ``context`` and lifts out any continuation."""

    def step(line: str) -> tuple[CommandResult, Continuation | None]:
        status = dispatch_line(context, line)
        return status, context.take_continuation()

    return step


class LineSequence:
    """Dispatch-or-continuation state machine over a stream of lines.

    ``active`` holds the continuation waiting for the next line. It is kept
    here rather than in the context slot, so commands run by the sequence
    never see it.
    """

    def __init__(
        self,
        context: ExecutionContext,
        step: Step | None = None,
        active: Continuation | None = None,
    ):
        self.context = context
        self.step = step or in_place(context)
        self.active = active

    @property
    def pending(self) -> bool:
        return self.active is not None

    def _execute(self, line: str) -> CommandResult:
        status, continuation = self.step(line)
        self.active = continuation
        return status

    def feed(self, line: str) -> CommandResult:
        """Consume one line; returns the status of whatever it executed."""
        if self.active is None:
            if not line.strip():
                return CommandResult.SUCCESS
            return self._execute(line)

        active = self.active
        result = active.handler(line, self.context)
        if result is None:
            return CommandResult.SUCCESS
        status = CommandResult.SUCCESS
        if result.tail is not None:
            status = self._execute(f"{active.owner} {result.tail}")
            if status is not CommandResult.SUCCESS:
                return status
        if not result.continue_after:
            self.active = None
        return status


def run_lines(
    context: ExecutionContext, lines: Iterable[str], *, label: str = "Script"
) -> CommandResult:
    """Run a fixed batch of lines, aborting on the first failure.

    The caller's continuation is set aside for the duration and put back
    afterwards, whatever the outcome. Commands see ``context.interactive``
    as False while the batch runs.
    """
    previous = context.take_continuation()
    was_interactive = context.interactive
    context.interactive = False
    sequence = LineSequence(context)
    try:
        for line in lines:
            status = sequence.feed(line)
            if status is not CommandResult.SUCCESS:
                return status
        if sequence.pending:
            context.error(f"{label} ended before continuation completed.")
            return CommandResult.FAILURE
        return CommandResult.SUCCESS
    finally:
        context.interactive = was_interactive
        context.continue_with(previous)


def read_script(path: str | Path) -> list[str]:
    """Read a script file, dropping lines whose first non-blank character is ``#``."""
    text = Path(path).expanduser().read_text(encoding="utf-8")
    return [line for line in text.splitlines() if not line.lstrip().startswith("#")]


def run_script(context: ExecutionContext, path: str | Path) -> CommandResult:
    try:
        lines = read_script(path)
    except OSError as e:
        context.error(f"Cannot read script {path}: {e.strerror or e}")
        return CommandResult.FAILURE
    logger.debug("running script %s (%d lines)", path, len(lines))
    return run_lines(context, lines, label="Script")


def run_interactive_line(context: ExecutionContext, line: str) -> CommandResult:
    """Feed one line typed at the prompt.

    The REPL keeps its continuation in the context slot between prompts. A
    blank line cancels a pending continuation, and a failing command always
    clears it.
    """
    active = context.take_continuation()
    if active is not None and not line.strip():
        context.debug(f"Left {active.owner} continuation.")
        return CommandResult.SUCCESS
    context.reset_failure()
    sequence = LineSequence(context, active=active)
    status = sequence.feed(line)
    if status is CommandResult.FAILURE:
        sequence.active = None
    context.continue_with(sequence.active)
    return status
