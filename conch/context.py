"""Execution context shared by every command, plus the continuation protocol types."""

import enum
import threading
import traceback
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from rich.console import Console
from rich.text import Text

from . import render as _render

T = TypeVar("T")


class LogLevel(enum.IntEnum):
    ERROR = 0
    WARN = 1
    INFO = 2
    DEBUG = 3

    def allows(self, level: "LogLevel") -> bool:
        return level <= self

    @classmethod
    def parse(cls, raw: str | None) -> "LogLevel | None":
        if raw is None:
            return None
        return {
            "error": cls.ERROR,
            "warn": cls.WARN,
            "warning": cls.WARN,
            "info": cls.INFO,
            "debug": cls.DEBUG,
        }.get(raw.strip().lower())


class CommandResult(enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    # Leave the session. Propagated up through runners instead of raised.
    EXIT = "exit"

    @property
    def is_failure(self) -> bool:
        return self is CommandResult.FAILURE


@dataclass(frozen=True)
class ContinuationResult:
    """What a continuation handler wants done with the line it just consumed.

    ``tail``, when set, is appended to the continuation's owner name and run
    as a new command line. ``continue_after`` keeps the continuation alive.
    """

    tail: str | None
    continue_after: bool

    @classmethod
    def continue_without_execution(cls) -> "ContinuationResult":
        return cls(None, True)

    @classmethod
    def execute_and_continue(cls, tail: str) -> "ContinuationResult":
        return cls(tail, True)

    @classmethod
    def execute_and_end(cls, tail: str) -> "ContinuationResult":
        return cls(tail, False)

    @classmethod
    def end(cls) -> "ContinuationResult":
        return cls(None, False)


ContinuationHandler = Callable[[str, "ExecutionContext"], "ContinuationResult | None"]


@dataclass(frozen=True)
class Continuation:
    owner: str
    handler: ContinuationHandler


@dataclass(frozen=True)
class StateKey(Generic[T]):
    """Typed key into the shared scratch store."""

    name: str
    type: type


class ScratchState:
    """Scratch store shared by reference between a context and its forks."""

    def __init__(self):
        self._values: dict[str, Any] = {}

    def get(self, key: StateKey[T]) -> T | None:
        value = self._values.get(key.name)
        if isinstance(value, key.type):
            return value
        return None

    def put(self, key: StateKey[T], value: T | None) -> None:
        if value is None:
            self._values.pop(key.name, None)
        else:
            self._values[key.name] = value

    def setdefault(self, key: StateKey[T], factory: Callable[[], T]) -> T:
        value = self.get(key)
        if value is None:
            value = factory()
            self._values[key.name] = value
        return value

    def remove(self, key: StateKey) -> None:
        self._values.pop(key.name, None)

    def __contains__(self, key: StateKey) -> bool:
        return self.get(key) is not None


class CancelToken:
    """Cooperative cancellation flag, safe to set from a signal handler."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def requested(self) -> bool:
        return self._event.is_set()

    def consume(self) -> bool:
        """Test-and-clear: True once per cancel() call."""
        if self._event.is_set():
            self._event.clear()
            return True
        return False


LAST_EXCEPTION = StateKey("conch.last_exception", BaseException)

_LOG_STYLES = {LogLevel.ERROR: "red", LogLevel.WARN: "yellow"}


class ExecutionContext:
    """Mutable environment handed to every command.

    Forks share the scratch store, registry and cancel token with their
    parent but own their output sink, failure flag and continuation slot.
    """

    def __init__(
        self,
        out,
        registry=None,
        *,
        width: int = 80,
        height: int = 24,
        state: ScratchState | None = None,
        cancel: CancelToken | None = None,
    ):
        self.out = out
        self.registry = registry
        self.width = width
        self.height = height
        self.state = state if state is not None else ScratchState()
        self.cancel = cancel if cancel is not None else CancelToken()
        self.log_level = LogLevel.INFO
        self.clip_frames = True
        self.allow_continuation = True
        self.interactive = True
        self.failed = False
        self._continuation: Continuation | None = None
        self._render_tap = None
        self._render_tap_size = (0, 0)
        self._render_tap_clip = False
        self._console = Console(
            file=out, highlight=False, soft_wrap=True, emoji=False
        )

    # -- Output --------------------------------------------------------------

    def write(self, text: str) -> None:
        self.out.write(text)

    def print(self, text: str = "") -> None:
        self.out.write(text + "\n")
        self.out.flush()

    def render(self, value) -> None:
        """Render a value as a character grid on the sink and the render tap."""
        rows = _render.render_rows(value, self.width, self.height, self.clip_frames)
        set_capture = getattr(self.out, "set_capture_enabled", None)
        if set_capture is not None:
            set_capture(False)
        try:
            for row in rows:
                self.out.write(row + "\n")
        finally:
            if set_capture is not None:
                set_capture(True)
        if self._render_tap is not None:
            width, height = self._render_tap_size
            for row in _render.render_rows(value, width, height, self._render_tap_clip):
                self._render_tap.write(row + "\n")
        self.out.flush()

    def set_render_tap(self, writer, width: int, height: int, clip: bool) -> None:
        self._render_tap = writer
        self._render_tap_size = (width, height)
        self._render_tap_clip = clip

    def set_size(self, width: int, height: int) -> None:
        self.width = width
        self.height = height

    # -- Logging ---------------------------------------------------------------

    def log(self, level: LogLevel, message: str | None, *, indent: str = "  - ") -> None:
        if message is None or not self.log_level.allows(level):
            return
        self._console.print(Text(indent + message, style=_LOG_STYLES.get(level, "")))
        self.out.flush()

    def log_continuation(self, level: LogLevel, message: str | None) -> None:
        self.log(level, message, indent="    ")

    def error(self, message: str) -> None:
        self.failed = True
        self.log(LogLevel.ERROR, message)

    def warn(self, message: str) -> None:
        self.log(LogLevel.WARN, message)

    def info(self, message: str) -> None:
        self.log(LogLevel.INFO, message)

    def debug(self, message: str) -> None:
        self.log(LogLevel.DEBUG, message)

    # -- Failure state ---------------------------------------------------------

    def fail(self) -> None:
        self.failed = True

    def reset_failure(self) -> None:
        self.failed = False

    def record_exception(self, error: BaseException | None) -> None:
        self.state.put(LAST_EXCEPTION, error)
        if error is not None:
            self.failed = True

    @property
    def last_exception(self) -> BaseException | None:
        return self.state.get(LAST_EXCEPTION)

    @staticmethod
    def format_traceback(error: BaseException | None) -> str:
        if error is None:
            return ""
        return "".join(traceback.format_exception(error)).rstrip()

    # -- Continuation slot -----------------------------------------------------

    @property
    def continuation(self) -> Continuation | None:
        return self._continuation

    def continue_with(self, continuation: Continuation | None) -> None:
        self._continuation = continuation

    def clear_continuation(self) -> None:
        self._continuation = None

    def take_continuation(self) -> Continuation | None:
        """Return the installed continuation and clear the slot."""
        continuation = self._continuation
        self._continuation = None
        return continuation

    # -- Cancellation ----------------------------------------------------------

    def interrupt(self) -> None:
        """Ctrl-C: request cancellation and drop any pending continuation."""
        self.cancel.cancel()
        self._continuation = None

    def consume_cancel(self) -> bool:
        return self.cancel.consume()

    # -- Scratch state -----------------------------------------------------------

    def get(self, key: StateKey[T]) -> T | None:
        return self.state.get(key)

    def put(self, key: StateKey[T], value: T | None) -> None:
        self.state.put(key, value)

    def remove(self, key: StateKey) -> None:
        self.state.remove(key)

    # -- Forking -----------------------------------------------------------------

    def fork(self, out) -> "ExecutionContext":
        child = ExecutionContext(
            out,
            self.registry,
            width=self.width,
            height=self.height,
            state=self.state,
            cancel=self.cancel,
        )
        child.log_level = self.log_level
        child.clip_frames = self.clip_frames
        child.interactive = self.interactive
        return child
