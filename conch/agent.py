"""Agent commands and the model conversation loop.

``agent chat`` sends the conversation to a backend, runs the command lines
found in the reply as sandboxed tool calls, feeds their output back as the
next user turn, and repeats until the model answers without tool calls.
"""

import logging
import time
from dataclasses import dataclass, field

import tiktoken

from . import fmt
from .backends import Backend, FinishReason, default_backends
from .capture import run_captured
from .commands import CommandSpec, Param, TableProvider
from .context import (
    CommandResult,
    Continuation,
    ContinuationResult,
    ExecutionContext,
    LogLevel,
    StateKey,
)
from .parser import ParsedCommand
from .render import wrap_text
from .report import ReportCollector
from .runner import LineSequence
from .tooling import Segment, parse_response, tool_instructions

logger = logging.getLogger(__name__)

DEFAULT_BACKEND = "openai"
DEFAULT_MAX_TURNS = 50
CONTINUE_PROMPT = "continue"

BACKEND_KEY = StateKey("agent.backend", str)
MODEL_KEY = StateKey("agent.model", str)

_encoder = tiktoken.get_encoding("cl100k_base")


def history_key(identity: str) -> StateKey:
    return StateKey(f"agent.history.{identity.lower()}", list)


def estimate_tokens(messages: list[dict]) -> int:
    """Count tokens across all messages using tiktoken."""
    total = 0
    for m in messages:
        total += len(_encoder.encode(m.get("content") or ""))
    # Per-message overhead (role, separators), ~4 tokens each
    return total + 4 * len(messages)


def show_text(context: ExecutionContext, text: str) -> None:
    """Print model prose wrapped to the context width, indented two columns."""
    width = max(1, context.width - 2) if context.width > 0 else 0
    for row in wrap_text(text, width):
        context.print(f"  {row}")
    context.print()


# ---------------------------------------------------------------------------
# Tool execution
# ---------------------------------------------------------------------------


@dataclass
class ToolRun:
    success: bool
    active: Continuation | None
    output: list[str] = field(default_factory=list)
    cancelled: bool = False
    exit: bool = False

    @property
    def needs_more(self) -> bool:
        return self.active is not None


def run_tool_segments(
    context: ExecutionContext,
    segments: list[Segment],
    active: Continuation | None,
    output: list[str],
    *,
    allow_continuation: bool = True,
    turn: int = 0,
    report: ReportCollector | None = None,
) -> ToolRun:
    """Render text segments and run tool lines through forked contexts.

    ``active`` is the continuation left pending by an earlier reply; the
    returned ToolRun carries whatever continuation is pending afterwards.
    """

    def step(line: str):
        started = time.monotonic()
        result = run_captured(context, line, allow_continuation)
        output.append(f"Command: {line}\n{result.output}\n")
        if report is not None:
            report.record_tool_call(
                turn, line, result.success, time.monotonic() - started, len(result.output)
            )
        if not result.success:
            context.warn("Tool failed; stopping further tool calls.")
            return CommandResult.FAILURE, result.continuation
        if result.exit:
            return CommandResult.EXIT, result.continuation
        return CommandResult.SUCCESS, result.continuation

    sequence = LineSequence(context, step, active=active)
    for segment in segments:
        if segment.text:
            show_text(context, segment.text)
        for line in segment.lines:
            if sequence.active is None:
                if context.consume_cancel():
                    context.warn("Agent chat cancelled.")
                    return ToolRun(False, sequence.active, output, cancelled=True)
                context.info(f"> {line}")
            else:
                context.log_continuation(LogLevel.INFO, f"  {line}")
            status = sequence.feed(line)
            if status is CommandResult.FAILURE:
                return ToolRun(False, sequence.active, output)
            if status is CommandResult.EXIT:
                return ToolRun(True, None, output, exit=True)
    return ToolRun(True, sequence.active, output)


# ---------------------------------------------------------------------------
# Conversation loop
# ---------------------------------------------------------------------------


def run_chat(
    context: ExecutionContext,
    backend: Backend,
    model: str,
    messages: list[dict],
    *,
    allow_continuation: bool = True,
    max_turns: int = DEFAULT_MAX_TURNS,
    report: ReportCollector | None = None,
) -> CommandResult:
    """Drive the conversation in ``messages`` until a final answer.

    ``messages`` must already end with the user's prompt; assistant and tool
    turns are appended in place.
    """
    name = backend.display_name
    last_calls: list[str] = []
    last_succeeded = True
    pending_text: str | None = None
    pending_continuation: Continuation | None = None
    pending_output: list[str] | None = None
    turn = 0

    while True:
        if context.consume_cancel():
            context.warn("Agent chat cancelled.")
            return CommandResult.SUCCESS
        turn += 1
        if max_turns and turn > max_turns:
            context.warn(f"{name} reached the turn limit ({max_turns}); stopping.")
            return CommandResult.SUCCESS

        token_est = estimate_tokens(messages)
        logger.debug("%s turn %d, ~%d prompt tokens", name, turn, token_est)
        if context.log_level.allows(LogLevel.DEBUG):
            fmt.turn_header(turn, max_turns, token_est, name)
        context.debug(f"Sending request to {name}.")
        started = time.monotonic()
        response = backend.chat(messages, model)
        elapsed = time.monotonic() - started
        finish = response.finish_reason if response is not None else FinishReason.OTHER
        if report is not None:
            report.record_llm_call(turn, elapsed, token_est, finish.value)
        if context.log_level.allows(LogLevel.DEBUG):
            fmt.llm_timing(elapsed, finish.value)

        if response is None or not response.text or not response.text.strip():
            context.error(f"No response from {name}.")
            last_error = getattr(backend, "last_error", None)
            if last_error:
                context.debug(last_error)
            return CommandResult.FAILURE

        messages.append({"role": "assistant", "content": response.text})
        normalized = backend.normalize_response(response.text)
        combined = normalized if pending_text is None else f"{pending_text}\n{normalized}"
        parsed = parse_response(combined)
        if parsed.incomplete:
            if report is not None:
                report.record_truncated_response(turn, "fence")
            pending_text = combined
            messages.append({"role": "user", "content": CONTINUE_PROMPT})
            continue
        pending_text = None

        if not parsed.tool_calls:
            context.debug(f"Received response from {name}.")
            show_text(context, combined)
            if response.finish_reason is FinishReason.LENGTH:
                if report is not None:
                    report.record_truncated_response(turn, "length")
                messages.append({"role": "user", "content": CONTINUE_PROMPT})
                continue
            return CommandResult.SUCCESS

        if parsed.tool_calls == last_calls and last_succeeded:
            context.warn(f"{name} repeated the same tool call; stopping.")
            if context.log_level.allows(LogLevel.DEBUG):
                fmt.loop_breaker(name, parsed.tool_calls)
            if report is not None:
                report.record_loop_break(turn, parsed.tool_calls)
            return CommandResult.SUCCESS
        last_calls = parsed.tool_calls
        context.debug(f"{name} requested {len(parsed.tool_calls)} tool call(s).")

        run = run_tool_segments(
            context,
            parsed.segments,
            pending_continuation,
            pending_output if pending_output is not None else [],
            allow_continuation=allow_continuation,
            turn=turn,
            report=report,
        )
        if run.output:
            messages.append({"role": "user", "content": "".join(run.output)})
        pending_continuation = run.active
        pending_output = run.output if run.active is not None else None

        if run.cancelled:
            return CommandResult.SUCCESS
        if run.exit:
            context.warn(f"{name} asked to quit; stopping.")
            return CommandResult.SUCCESS
        if not run.success:
            return CommandResult.FAILURE
        if run.needs_more:
            if report is not None:
                report.record_continuation(turn, run.active.owner)
            last_succeeded = False
            messages.append({"role": "user", "content": CONTINUE_PROMPT})
            continue
        last_succeeded = True


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


def _split_model(raw: str) -> tuple[str | None, str]:
    """Split ``backend:model``; a bare name has no backend part."""
    index = raw.find(":")
    if index <= 0:
        return None, raw
    model = raw[index + 1 :]
    return raw[:index], model or raw


class AgentProvider(TableProvider):
    """``agent`` subcommands plus the top-level ``chat`` alias."""

    def __init__(
        self,
        backends: list[Backend] | None = None,
        *,
        default_backend: str = DEFAULT_BACKEND,
        default_model: str | None = None,
        max_turns: int = DEFAULT_MAX_TURNS,
        report: ReportCollector | None = None,
    ):
        prompt = (Param("prompt", optional=True, variadic=True),)
        super().__init__(
            "agent",
            [
                CommandSpec(
                    "agent",
                    self._usage,
                    (Param("subcommand", optional=True, variadic=True),),
                    usage="agent <subcommand>",
                ),
                CommandSpec(
                    "agent",
                    self._chat,
                    prompt,
                    sub="chat",
                    help="Send a prompt to the current backend; without one, enter chat mode.",
                    usage="agent chat <prompt>",
                ),
                CommandSpec(
                    "agent",
                    self._delegate,
                    prompt,
                    sub="delegate",
                    help="Run a one-off task in a fresh conversation.",
                    usage="agent delegate <prompt>",
                ),
                CommandSpec(
                    "agent",
                    self._model,
                    (Param("name", optional=True),),
                    sub="model",
                    help="Show or set the backend and model.",
                    usage="agent model [name|backend:name]",
                ),
                CommandSpec(
                    "agent", self._models, sub="models", help="List models of configured backends."
                ),
                CommandSpec(
                    "agent", self._showprompt, sub="showprompt", help="Print the system prompt."
                ),
                CommandSpec(
                    "agent", self._reset, sub="reset", help="Clear the conversation history."
                ),
                CommandSpec(
                    "chat",
                    self._chat,
                    prompt,
                    help="Shorthand for agent chat.",
                    usage="chat <prompt>",
                ),
            ],
        )
        self.backends = list(backends) if backends is not None else default_backends()
        self.default_backend = default_backend
        self.default_model = default_model
        self.max_turns = max_turns
        self.report = report

    # -- State ---------------------------------------------------------------

    def backend_by_id(self, identity: str) -> Backend | None:
        for backend in self.backends:
            if backend.identity.lower() == identity.lower():
                return backend
        return None

    def current_backend_id(self, context: ExecutionContext) -> str:
        return context.get(BACKEND_KEY) or self.default_backend

    def current_backend(self, context: ExecutionContext) -> Backend | None:
        return self.backend_by_id(self.current_backend_id(context))

    def current_model(self, context: ExecutionContext) -> str:
        model = context.get(MODEL_KEY) or self.default_model
        if model:
            return model
        backend = self.current_backend(context)
        return backend.default_model if backend is not None else ""

    def history(self, context: ExecutionContext, backend: Backend) -> list[dict]:
        return context.state.setdefault(
            history_key(backend.identity),
            lambda: [{"role": "system", "content": tool_instructions(context.registry)}],
        )

    # -- Handlers ------------------------------------------------------------

    def _usage(self, context: ExecutionContext, cmd: ParsedCommand, *words):
        if words:
            context.error(f"Unknown subcommand: {words[0]}")
            return CommandResult.FAILURE
        context.print("Usage:")
        for line in self.usage("agent"):
            context.print(f"  {line}")
        return CommandResult.SUCCESS

    def _enter_chat_mode(self, context: ExecutionContext) -> None:
        def on_line(line: str, ctx: ExecutionContext) -> ContinuationResult:
            return ContinuationResult.execute_and_continue(line)

        context.continue_with(Continuation("chat", on_line))

    def _chat(self, context: ExecutionContext, cmd: ParsedCommand, *words):
        if not words:
            if context.allow_continuation:
                self._enter_chat_mode(context)
                context.debug("Entering chat mode.")
                return CommandResult.SUCCESS
            context.print("Usage: chat <prompt>")
            return CommandResult.SUCCESS
        backend = self._ready_backend(context)
        if backend is None:
            return CommandResult.FAILURE
        # Only an interactive driver stays in chat mode after the reply.
        if context.allow_continuation and context.interactive:
            self._enter_chat_mode(context)
        context.debug(f"Starting agent chat with {backend.display_name}.")
        messages = self.history(context, backend)
        messages.append({"role": "user", "content": " ".join(words)})
        return run_chat(
            context,
            backend,
            self.current_model(context),
            messages,
            allow_continuation=context.allow_continuation,
            max_turns=self.max_turns,
            report=self.report,
        )

    def _delegate(self, context: ExecutionContext, cmd: ParsedCommand, *words):
        if not words:
            context.print("Usage: agent delegate <prompt>")
            return CommandResult.SUCCESS
        backend = self._ready_backend(context)
        if backend is None:
            return CommandResult.FAILURE
        messages = [
            {"role": "system", "content": tool_instructions(context.registry, delegated=True)},
            {"role": "user", "content": " ".join(words)},
        ]
        return run_chat(
            context,
            backend,
            self.current_model(context),
            messages,
            allow_continuation=False,
            max_turns=self.max_turns,
            report=self.report,
        )

    def _ready_backend(self, context: ExecutionContext) -> Backend | None:
        backend = self.current_backend(context)
        if backend is None:
            context.error("No agent backend is available.")
            return None
        if not backend.is_configured():
            context.error(backend.missing_config_message())
            return None
        return backend

    def _model(self, context: ExecutionContext, cmd: ParsedCommand, raw):
        context.clear_continuation()
        if raw is None:
            context.print(f"{self.current_backend_id(context)}:{self.current_model(context)}")
            return CommandResult.SUCCESS
        backend_id, model = _split_model(raw)
        if backend_id is None:
            backend_id = self.find_backend_for_model(model)
            if backend_id is None:
                context.warn(f"No backend found for model: {model}")
                backend_id = self.current_backend_id(context)
        elif self.backend_by_id(backend_id) is None:
            context.error(f"Unknown backend: {backend_id}")
            return CommandResult.FAILURE
        context.put(BACKEND_KEY, backend_id)
        context.put(MODEL_KEY, model)
        context.print(f"Model set to {backend_id}:{model}")
        return CommandResult.SUCCESS

    def find_backend_for_model(self, model: str) -> str | None:
        if not model.strip():
            return None
        for backend in self.backends:
            if not backend.is_configured():
                continue
            for candidate in backend.list_models():
                if candidate.lower() == model.lower():
                    return backend.identity
        return None

    def _models(self, context: ExecutionContext, cmd: ParsedCommand):
        for backend in self.backends:
            if not backend.is_configured():
                context.warn(backend.missing_config_message())
                continue
            context.debug(f"Fetching model list from {backend.display_name}.")
            models = backend.list_models()
            if not models:
                context.print(f"No models returned from {backend.display_name}.")
                continue
            for name in models:
                context.print(f"{backend.identity}:{name}")
        return CommandResult.SUCCESS

    def _showprompt(self, context: ExecutionContext, cmd: ParsedCommand):
        context.print(tool_instructions(context.registry))
        return CommandResult.SUCCESS

    def _reset(self, context: ExecutionContext, cmd: ParsedCommand):
        context.clear_continuation()
        backend = self.current_backend(context)
        if backend is None:
            context.print("Agent history cleared.")
            return CommandResult.SUCCESS
        context.remove(history_key(backend.identity))
        context.print(f"Agent history cleared for {backend.display_name}.")
        return CommandResult.SUCCESS
