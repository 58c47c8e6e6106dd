"""User-defined macros: named command templates with positional parameters."""

import re
from dataclasses import dataclass

from .commands import CommandSpec, Param, TableProvider
from .context import (
    CommandResult,
    Continuation,
    ContinuationResult,
    ExecutionContext,
    StateKey,
)
from .parser import ParsedCommand
from .registry import Executable
from .runner import run_lines

PARAM_PATTERN = re.compile(r"\$(\d+|@)")
INLINE_BODY = re.compile(r"^(|.*\s)end\s*$", re.DOTALL)

# Body lines of a multi-line def while it is being typed.
RECORDING = StateKey("macro.def.lines", list)


@dataclass(frozen=True)
class Macro:
    name: str
    lines: tuple[str, ...]
    required_args: int


def required_args(lines) -> int:
    """Highest positional index referenced; ``$@`` does not count."""
    highest = 0
    for line in lines:
        for token in PARAM_PATTERN.findall(line):
            if token != "@":
                highest = max(highest, int(token))
    return highest


def expand(line: str, args: tuple[str, ...], raw_args: str) -> str:
    def substitute(match: re.Match) -> str:
        token = match.group(1)
        if token == "@":
            return raw_args
        index = int(token)
        if 1 <= index <= len(args):
            return args[index - 1]
        return ""

    return PARAM_PATTERN.sub(substitute, line)


def _remainder_after_name(cmd: ParsedCommand, name: str) -> str:
    tail = cmd.tail
    if tail.startswith(name):
        return tail[len(name) :].strip()
    return tail


class MacroProvider(TableProvider):
    """``def``/``undef``/``macros`` plus one command per defined macro."""

    def __init__(self):
        super().__init__(
            "macros",
            [
                CommandSpec(
                    "def",
                    self._define,
                    (Param("name", optional=True), Param("body", optional=True, variadic=True)),
                    help="Define a macro; without a trailing end, body lines follow until end.",
                    usage="def <name> ... end",
                ),
                CommandSpec(
                    "undef",
                    self._undefine,
                    (Param("name", optional=True),),
                    help="Delete a macro.",
                    usage="undef <name>",
                ),
                CommandSpec("macros", self._list, help="List defined macros."),
            ],
        )
        self.macros: dict[str, Macro] = {}

    def names(self) -> set[str]:
        return super().names() | set(self.macros)

    def usage(self, name: str) -> list[str]:
        if name in self.macros:
            return [name]
        return super().usage(name)

    def build(self, cmd: ParsedCommand) -> Executable:
        macro = self.macros.get(cmd.name)
        if macro is None:
            return super().build(cmd)
        return lambda context: self.invoke(context, macro, cmd)

    def put(self, name: str, lines: list[str]) -> Macro:
        macro = Macro(name, tuple(lines), required_args(lines))
        self.macros[name] = macro
        return macro

    def invoke(
        self, context: ExecutionContext, macro: Macro, cmd: ParsedCommand
    ) -> CommandResult:
        if macro.required_args > len(cmd.args):
            context.error(f"Macro requires at least {macro.required_args} arguments.")
            return CommandResult.FAILURE
        raw_args = cmd.tail
        expanded = [expand(line, cmd.args, raw_args) for line in macro.lines]
        return run_lines(context, expanded, label="Macro")

    # -- Handlers ------------------------------------------------------------

    def _define(self, context: ExecutionContext, cmd: ParsedCommand, name, *body):
        if name is None:
            context.error("Usage: def <name> ... end")
            return CommandResult.FAILURE
        inline = _remainder_after_name(cmd, name)
        match = INLINE_BODY.match(inline)
        if match:
            text = match.group(1).strip()
            self.put(name, [text] if text else [])
            return CommandResult.SUCCESS
        if not context.allow_continuation:
            context.error("Usage: def <name> ... end")
            return CommandResult.FAILURE

        recorded: list[str] = [inline] if inline else []
        context.put(RECORDING, recorded)

        def on_line(line: str, ctx: ExecutionContext) -> ContinuationResult:
            lines = ctx.get(RECORDING)
            if lines is None:
                lines = []
            if line.strip() == "end":
                ctx.remove(RECORDING)
                self.put(name, list(lines))
                ctx.debug(f"Defined macro {name}.")
                return ContinuationResult.end()
            lines.append(line)
            ctx.put(RECORDING, lines)
            return ContinuationResult.continue_without_execution()

        context.continue_with(Continuation("def", on_line))
        return CommandResult.SUCCESS

    def _undefine(self, context: ExecutionContext, cmd: ParsedCommand, name):
        if name is None:
            context.error("Usage: undef <name>")
            return CommandResult.FAILURE
        if self.macros.pop(name, None) is None:
            context.warn(f"Macro not found: {name}")
        return CommandResult.SUCCESS

    def _list(self, context: ExecutionContext, cmd: ParsedCommand):
        if not self.macros:
            context.print("No macros defined.")
            return CommandResult.SUCCESS
        for name in sorted(self.macros):
            context.print(name)
        return CommandResult.SUCCESS
