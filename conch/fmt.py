"""ANSI-formatted stderr diagnostics using Rich."""

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.text import Text

_console = Console(stderr=True)


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Reconfigure the module-level console from CLI flags or config.

    Call once at startup, before any output.
    """
    global _console
    kwargs: dict = {"stderr": True}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(**kwargs)


# -- Agent turns -------------------------------------------------------------


def turn_header(n: int, max_n: int, token_est: int, backend: str) -> None:
    limit = str(max_n) if max_n else "-"
    title = f"{backend} turn {n}/{limit} (~{token_est} tokens)"
    _console.print(Rule(title, style="cyan"))


def llm_timing(elapsed: float, finish_reason: str) -> None:
    style = "green" if finish_reason == "stop" else "yellow"
    text = Text()
    text.append(f"  model responded in {elapsed:.1f}s", style=style)
    text.append(f"  finish_reason={escape(str(finish_reason))}", style=style)
    _console.print(text)


# -- Tool lines --------------------------------------------------------------


def loop_breaker(backend: str, calls: list[str]) -> None:
    line = Text()
    line.append("  ⚠ Loop breaker: ", style="bold yellow")
    line.append(f"{backend} repeated {len(calls)} tool call(s)", style="yellow")
    _console.print(line)


# -- Diagnostics -------------------------------------------------------------


def info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)


def repl_banner() -> None:
    _console.print(
        Text(
            "Interactive mode. Type help for commands, quit or Ctrl-D to leave.",
            style="dim",
        )
    )
