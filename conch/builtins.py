"""Built-in system commands."""

from .commands import CommandSpec, Param, TableProvider
from .context import CommandResult, ExecutionContext, LogLevel
from .parser import ParsedCommand
from .runner import run_script


def _signatures(provider) -> list[str]:
    lines: list[str] = []
    for name in sorted(provider.names()):
        for sub in provider.subcommands(name):
            line = f"{name} {sub}"
            if line not in lines:
                lines.append(line)
        for usage in provider.usage(name):
            if usage not in lines:
                lines.append(usage)
    return lines


def _help(context: ExecutionContext, cmd: ParsedCommand, name, sub):
    registry = context.registry
    if name is None:
        context.print("Commands:")
        for provider in registry.ordered():
            context.print(f"  [{registry.state(provider)}] {provider.label}")
            for signature in _signatures(provider):
                context.print(f"    {signature}")
        return CommandResult.SUCCESS

    provider = registry.provider_for(name)
    if provider is None:
        context.error(f"Unknown command: {name}")
        return CommandResult.FAILURE
    usages = provider.usage(name) or [name]
    context.print("Usage:")
    shown = usages
    if sub is not None:
        prefix = f"{name} {sub}"
        shown = [u for u in usages if u == prefix or u.startswith(prefix + " ")]
        if not shown:
            context.warn(f"No detailed usage for {name} {sub}")
            shown = usages
    notes = provider.describe(name)
    for usage in shown:
        context.print(f"  {usage}")
        if notes.get(usage):
            context.print(f"      {notes[usage]}")
    subs = provider.subcommands(name)
    if subs:
        context.print()
        context.print("Subcommands:")
        for s in subs:
            context.print(f"  {name} {s}")
    return CommandResult.SUCCESS


def _quit(context: ExecutionContext, cmd: ParsedCommand):
    return CommandResult.EXIT


def _set_registry(context: ExecutionContext, label: str, enable: bool):
    registry = context.registry
    provider = registry.find_by_label(label)
    if provider is None:
        context.error(f"No provider named: {label}")
        return CommandResult.FAILURE
    if enable:
        context.registry = registry.enable(provider)
        context.print(f"Enabled: {provider.label}")
    else:
        context.registry = registry.disable(provider)
        context.print(f"Disabled: {provider.label}")
    return CommandResult.SUCCESS


def _enable(context: ExecutionContext, cmd: ParsedCommand, label):
    return _set_registry(context, label, True)


def _disable(context: ExecutionContext, cmd: ParsedCommand, label):
    return _set_registry(context, label, False)


def _loglevel(context: ExecutionContext, cmd: ParsedCommand, raw):
    if raw is None:
        context.print(f"Log level: {context.log_level.name.lower()}")
        return CommandResult.SUCCESS
    level = LogLevel.parse(raw)
    if level is None:
        context.error(f"Unknown log level: {raw}")
        context.print("Available levels: error, warn, info, debug")
        return CommandResult.FAILURE
    context.log_level = level
    context.print(f"Log level set to {level.name.lower()}")
    return CommandResult.SUCCESS


def _lastexception(context: ExecutionContext, cmd: ParsedCommand):
    error = context.last_exception
    if error is None:
        context.print("No exception recorded.")
    else:
        context.print(context.format_traceback(error))
    return CommandResult.SUCCESS


def _echo(context: ExecutionContext, cmd: ParsedCommand, *words):
    context.print(" ".join(words))
    return CommandResult.SUCCESS


def _source(context: ExecutionContext, cmd: ParsedCommand, path):
    return run_script(context, path)


def system_provider() -> TableProvider:
    return TableProvider(
        "system",
        [
            CommandSpec(
                "help",
                _help,
                (Param("command", optional=True), Param("subcommand", optional=True)),
                help="List providers and commands, or show usage for one command.",
            ),
            CommandSpec("quit", _quit, help="Leave the session."),
            CommandSpec("q", _quit, help="Leave the session."),
            CommandSpec("enable", _enable, (Param("provider"),), help="Give a provider priority."),
            CommandSpec("disable", _disable, (Param("provider"),), help="Hide a provider."),
            CommandSpec(
                "loglevel",
                _loglevel,
                (Param("level", optional=True),),
                help="Show or set the log level (error, warn, info, debug).",
            ),
            CommandSpec("lastexception", _lastexception, help="Print the last recorded traceback."),
            CommandSpec(
                "echo", _echo, (Param("text", optional=True, variadic=True),), help="Print text."
            ),
            CommandSpec("source", _source, (Param("path"),), help="Run a script file."),
        ],
    )
