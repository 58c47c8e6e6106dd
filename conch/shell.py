"""Command-line entry point and interactive REPL."""

import argparse
import logging
import os
import shutil
import signal
import sys
from contextlib import contextmanager
from importlib import metadata
from pathlib import Path

from . import fmt
from .config import (
    _UNSET,
    apply_config_to_args,
    default_history_path,
    generate_config,
    global_config_dir,
    load_config,
)
from .context import CommandResult
from .report import ConchError, ReportCollector
from .session import Session

logger = logging.getLogger(__name__)


def build_parser():
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="conch",
        usage="%(prog)s [options] [script ...]\n       %(prog)s -c LINE [-c LINE ...]",
        description="A command shell whose commands can be driven by a person, "
        "a script, or a language-model agent.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "scripts", nargs="*", metavar="script", help="Script files to run in order."
    )
    parser.add_argument(
        "-c",
        dest="commands",
        action="append",
        default=[],
        metavar="LINE",
        help="Run a command line (repeatable). Runs after scripts.",
    )
    parser.add_argument(
        "--repl",
        action="store_true",
        help="Start the interactive prompt after running scripts and -c lines.",
    )
    parser.add_argument(
        "--backend",
        choices=["openai", "anthropic", "gemini"],
        default=_UNSET,
        help="Agent backend (default: openai).",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=_UNSET,
        help="Agent model name (default: the backend's default model).",
    )
    parser.add_argument(
        "--log-level",
        choices=["error", "warn", "warning", "info", "debug"],
        default=_UNSET,
        help="Command log level (default: info).",
    )
    parser.add_argument(
        "--max-turns",
        type=int,
        default=_UNSET,
        help="Maximum agent loop iterations per prompt; 0 disables the limit (default: 50).",
    )
    parser.add_argument(
        "--report",
        type=str,
        default=None,
        metavar="FILE",
        help="Write a JSON report of agent activity to FILE on exit.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Write a template global config file and exit.",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_true",
        default=_UNSET,
        help="Force ANSI color even when stderr is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_true",
        default=_UNSET,
        help="Disable ANSI color even when stderr is a TTY.",
    )
    parser.set_defaults(width=_UNSET, height=_UNSET, history=_UNSET)
    return parser


def init_config_file() -> int:
    path = global_config_dir() / "config.toml"
    if path.exists():
        fmt.error(f"{path} already exists")
        return 1
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(generate_config(), encoding="utf-8")
    fmt.info(f"Wrote {path}")
    return 0


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        try:
            version = metadata.version("conch")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    if args.init_config:
        sys.exit(init_config_file())

    try:
        apply_config_to_args(args, load_config(Path.cwd()))
    except ConchError as e:
        fmt.error(str(e))
        sys.exit(1)

    fmt.init(color=args.color, no_color=args.no_color)
    if args.log_level == "debug":
        logging.basicConfig(level=logging.DEBUG, stream=sys.stderr)
    if args.max_turns < 0:
        parser.error("--max-turns must be >= 0")

    size = shutil.get_terminal_size()
    report = ReportCollector() if args.report else None
    try:
        session = Session(
            width=args.width or size.columns,
            height=args.height or size.lines,
            log_level=args.log_level,
            backend=args.backend,
            model=args.model,
            max_turns=args.max_turns,
            report=report,
        )
    except ConchError as e:
        fmt.error(str(e))
        sys.exit(1)

    status = run_batch(session, args.scripts, args.commands)
    interactive = args.repl or (not args.scripts and not args.commands)
    if status is CommandResult.SUCCESS and interactive:
        status = repl_loop(session, history_path=args.history or default_history_path())

    if report is not None:
        _write_report(report, args.report, session, args.commands, status)
    sys.exit(1 if status is CommandResult.FAILURE else 0)


def run_batch(session: Session, scripts: list[str], commands: list[str]) -> CommandResult:
    """Run script files, then -c lines, stopping at the first failure or quit."""
    for script in scripts:
        with _interruptible(session):
            status = session.run_script(script)
        if status is not CommandResult.SUCCESS:
            return status
    if commands:
        with _interruptible(session):
            status = session.run_lines(commands)
        if status is not CommandResult.SUCCESS:
            return status
    return CommandResult.SUCCESS


def _write_report(report, path, session, commands, status) -> None:
    report.finalize(
        task="\n".join(commands),
        model=session.agent.current_model(session.context),
        backend=session.agent.current_backend_id(session.context),
        outcome="error" if status is CommandResult.FAILURE else "success",
        answer=None,
        turns=report.max_turn_seen,
    )
    try:
        report.write(path)
    except OSError as e:
        fmt.error(f"Failed to write report to {path}: {e}")
        return
    fmt.info(f"Report written to {path}")


@contextmanager
def _interruptible(session: Session):
    """Route Ctrl-C to the session's cancel token while a command runs."""
    try:
        previous = signal.signal(signal.SIGINT, lambda signum, frame: session.interrupt())
    except ValueError:
        # Not the main thread; leave the default handler in place.
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


# ---------------------------------------------------------------------------
# REPL
# ---------------------------------------------------------------------------


def _completer(session: Session):
    from prompt_toolkit.completion import Completer, Completion

    class CommandCompleter(Completer):
        def get_completions(self, document, complete_event):
            text = document.text_before_cursor
            words = text.split()
            if not words or (len(words) == 1 and not text.endswith(" ")):
                prefix = words[0] if words else ""
                for name in session.registry.command_names():
                    if name.startswith(prefix):
                        yield Completion(name, start_position=-len(prefix))
                return
            if len(words) > 2 or (len(words) == 2 and text.endswith(" ")):
                return
            prefix = words[1] if len(words) == 2 else ""
            for sub in session.registry.subcommands(words[0]):
                if sub.startswith(prefix):
                    yield Completion(sub, start_position=-len(prefix))

    return CommandCompleter()


def repl_loop(session: Session, *, history_path: str | Path | None = None) -> CommandResult:
    """Interactive read-eval-print loop.

    Returns EXIT when the user quits and SUCCESS at end of input.
    """
    from prompt_toolkit import PromptSession
    from prompt_toolkit.formatted_text import FormattedText
    from prompt_toolkit.history import FileHistory, InMemoryHistory

    if history_path is not None:
        os.makedirs(os.path.dirname(os.fspath(history_path)) or ".", exist_ok=True)
        history = FileHistory(os.fspath(history_path))
    else:
        history = InMemoryHistory()
    prompt_session = PromptSession(
        history=history,
        completer=_completer(session),
        enable_history_search=True,
    )
    fmt.repl_banner()

    while True:
        session.context.consume_cancel()
        owner = session.pending_owner
        label = f"{owner} > " if owner else "> "
        try:
            line = prompt_session.prompt(FormattedText([("bold fg:ansigreen", label)]))
        except KeyboardInterrupt:
            # Ctrl-C at the prompt drops a pending continuation and keeps going.
            session.context.clear_continuation()
            continue
        except EOFError:
            print(file=sys.stderr)  # newline after ^D
            return CommandResult.SUCCESS

        with _interruptible(session):
            status = session.feed(line)
        if status is CommandResult.EXIT:
            return CommandResult.EXIT
        if status is CommandResult.FAILURE:
            logger.debug("command failed: %r", line)
