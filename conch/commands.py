"""Explicit command registration table.

Each provider declares its commands as ``CommandSpec`` entries: a name, an
optional subcommand, a typed parameter list and a handler. Arguments are
coerced per declared type before the handler runs, and usage strings are
derived from the same table.
"""

from dataclasses import dataclass
from typing import Callable

from .context import CommandResult, ExecutionContext
from .parser import ParsedCommand
from .registry import CommandProvider, Executable

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}


def _coerce_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(raw)


_COERCERS: dict[type, Callable[[str], object]] = {
    str: str,
    int: int,
    float: float,
    bool: _coerce_bool,
}


@dataclass(frozen=True)
class Param:
    name: str
    type: type = str
    optional: bool = False
    variadic: bool = False

    def describe(self) -> str:
        label = self.name + ("..." if self.variadic else "")
        return f"[{label}]" if self.optional else f"<{label}>"


@dataclass(frozen=True)
class CommandSpec:
    """One callable entry: ``handler(context, cmd, *coerced_args)``."""

    name: str
    handler: Callable[..., CommandResult | None]
    params: tuple[Param, ...] = ()
    sub: str | None = None
    help: str = ""
    usage: str | None = None

    def signature(self) -> str:
        if self.usage:
            return self.usage
        parts = [self.name]
        if self.sub:
            parts.append(self.sub)
        parts.extend(p.describe() for p in self.params)
        return " ".join(parts)

    def bind(self, args: tuple[str, ...]) -> list:
        """Coerce raw arguments into handler values.

        Raises TypeError for a wrong argument count, ValueError (naming the
        parameter) for a value that does not parse as its declared type.
        """
        values: list = []
        remaining = list(args)
        for param in self.params:
            coerce = _COERCERS[param.type]
            if param.variadic:
                if not remaining and not param.optional:
                    raise TypeError(self.signature())
                for raw in remaining:
                    values.append(_coerce_one(param, coerce, raw))
                remaining = []
                break
            if not remaining:
                if not param.optional:
                    raise TypeError(self.signature())
                values.append(None)
                continue
            values.append(_coerce_one(param, coerce, remaining.pop(0)))
        if remaining:
            raise TypeError(self.signature())
        return values


def _coerce_one(param: Param, coerce, raw: str):
    try:
        return coerce(raw)
    except ValueError:
        raise ValueError(
            f"Invalid value for {param.name}: {raw!r} (expected {param.type.__name__})"
        ) from None


class TableProvider(CommandProvider):
    """A provider whose commands come from a list of ``CommandSpec`` entries."""

    def __init__(self, label: str, specs: list[CommandSpec] | None = None):
        self.label = label
        self.specs: list[CommandSpec] = list(specs or [])

    def names(self) -> set[str]:
        return {spec.name for spec in self.specs}

    def subcommands(self, name: str) -> list[str]:
        return [spec.sub for spec in self.specs if spec.name == name and spec.sub]

    def usage(self, name: str) -> list[str]:
        return [spec.signature() for spec in self.specs if spec.name == name]

    def describe(self, name: str) -> dict[str, str]:
        """Help text keyed by usage line, for ``help <command>``."""
        return {
            spec.signature(): spec.help
            for spec in self.specs
            if spec.name == name and spec.help
        }

    def _select(self, cmd: ParsedCommand) -> tuple[CommandSpec | None, tuple[str, ...]]:
        candidates = [spec for spec in self.specs if spec.name == cmd.name]
        if cmd.args:
            for spec in candidates:
                if spec.sub and spec.sub == cmd.args[0].lower():
                    return spec, cmd.args[1:]
        for spec in candidates:
            if spec.sub is None:
                return spec, cmd.args
        return None, cmd.args

    def build(self, cmd: ParsedCommand) -> Executable:
        spec, args = self._select(cmd)

        def execute(context: ExecutionContext) -> CommandResult | None:
            if spec is None:
                subs = ", ".join(self.subcommands(cmd.name))
                if cmd.args:
                    context.error(f"Unknown subcommand: {cmd.args[0]}. Available: {subs}")
                else:
                    context.error(f"Missing subcommand. Available: {subs}")
                return CommandResult.FAILURE
            try:
                values = spec.bind(args)
            except TypeError as e:
                context.error(f"Usage: {e}")
                return CommandResult.FAILURE
            except ValueError as e:
                context.error(str(e))
                return CommandResult.FAILURE
            return spec.handler(context, cmd, *values)

        return execute
