"""Public library API for conch: the Session class."""

import sys
from pathlib import Path

from .agent import DEFAULT_BACKEND, DEFAULT_MAX_TURNS, AgentProvider
from .backends import Backend
from .builtins import system_provider
from .context import CommandResult, ExecutionContext, LogLevel
from .macros import MacroProvider
from .registry import CommandProvider, ProviderRegistry
from .report import ConfigError, ReportCollector
from .runner import dispatch_line, run_interactive_line, run_lines, run_script
from .sql import SqlProvider


class Session:
    """Top-level command session.

    Owns the provider registry and the root execution context that every
    driver (REPL, script, programmatic call) feeds lines into.
    """

    def __init__(
        self,
        *,
        out=None,
        width: int = 80,
        height: int = 24,
        log_level: str = "info",
        backend: str = DEFAULT_BACKEND,
        model: str | None = None,
        max_turns: int = DEFAULT_MAX_TURNS,
        backends: list[Backend] | None = None,
        report: ReportCollector | None = None,
        extra_providers: list[CommandProvider] | None = None,
    ):
        level = LogLevel.parse(log_level)
        if level is None:
            raise ConfigError(f"unknown log level {log_level!r}")
        if max_turns < 0:
            raise ConfigError("max_turns must be >= 0")

        self.backend = backend
        self.model = model
        self.max_turns = max_turns
        self.report = report
        self.agent = AgentProvider(
            backends,
            default_backend=backend,
            default_model=model,
            max_turns=max_turns,
            report=report,
        )
        if self.agent.backend_by_id(backend) is None:
            raise ConfigError(f"unknown backend {backend!r}")
        self.macros = MacroProvider()
        providers = [system_provider(), self.macros, SqlProvider(), self.agent]
        providers.extend(extra_providers or [])
        self.context = ExecutionContext(
            out if out is not None else sys.stdout,
            ProviderRegistry(providers),
            width=width,
            height=height,
        )
        self.context.log_level = level

    @property
    def registry(self) -> ProviderRegistry:
        return self.context.registry

    @property
    def pending_owner(self) -> str | None:
        """Owner of the continuation waiting for the next interactive line."""
        continuation = self.context.continuation
        return continuation.owner if continuation is not None else None

    def run_line(self, line: str) -> CommandResult:
        """Execute one command line; a continuation it installs is left in place."""
        self.context.reset_failure()
        return dispatch_line(self.context, line)

    def feed(self, line: str) -> CommandResult:
        """Feed one interactively typed line (continuations persist between calls)."""
        return run_interactive_line(self.context, line)

    def run_lines(self, lines: list[str]) -> CommandResult:
        self.context.reset_failure()
        return run_lines(self.context, lines, label="Script")

    def run_script(self, path: str | Path) -> CommandResult:
        self.context.reset_failure()
        return run_script(self.context, path)

    def interrupt(self) -> None:
        self.context.interrupt()
