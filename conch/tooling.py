"""The tool-call convention shared with language models.

A model runs commands by replying with a fenced block tagged ``conch``
(one command per non-blank line) or with single ``conch: <command>`` lines.
This module parses replies into ordered segments, emits blocks in the same
form, and builds the system prompt that explains the convention.
"""

import re
from dataclasses import dataclass, field

from .registry import ProviderRegistry

TOOL_MARKER = "conch"
FENCE = "```"

TOOL_LINE_PATTERN = re.compile(rf"^\s*{TOOL_MARKER}\s*:\s*(.+)$")


@dataclass(frozen=True)
class Segment:
    """A run of free text (``text``) or of tool-call lines (``lines``)."""

    text: str | None = None
    lines: tuple[str, ...] = ()

    @property
    def is_tool(self) -> bool:
        return self.text is None


@dataclass
class ParsedResponse:
    segments: list[Segment] = field(default_factory=list)
    tool_calls: list[str] = field(default_factory=list)
    incomplete: bool = False

    @property
    def text(self) -> str:
        return "\n\n".join(s.text for s in self.segments if s.text is not None)


def _flush_text(parsed: ParsedResponse, buffer: list[str]) -> None:
    text = "\n".join(buffer).strip()
    if text:
        parsed.segments.append(Segment(text=text))
    buffer.clear()


def parse_response(response: str) -> ParsedResponse:
    """Split a model reply into text and tool-call segments, in order.

    Fences whose opener is not exactly the marker are kept as text. An
    unterminated fence marks the reply incomplete.
    """
    parsed = ParsedResponse()
    text_buffer: list[str] = []
    fence_lines: list[str] = []
    in_fence = False
    tool_fence = False

    for line in response.splitlines():
        if line.startswith(FENCE):
            if in_fence:
                if tool_fence:
                    calls = tuple(s.strip() for s in fence_lines if s.strip())
                    if calls:
                        parsed.segments.append(Segment(lines=calls))
                        parsed.tool_calls.extend(calls)
                else:
                    text_buffer.extend(fence_lines)
                fence_lines = []
                in_fence = False
                tool_fence = False
            else:
                _flush_text(parsed, text_buffer)
                in_fence = True
                tool_fence = line.strip().lower() == FENCE + TOOL_MARKER
            continue
        if in_fence:
            fence_lines.append(line)
            continue
        match = TOOL_LINE_PATTERN.match(line)
        call = match.group(1).strip() if match else ""
        if call:
            _flush_text(parsed, text_buffer)
            parsed.segments.append(Segment(lines=(call,)))
            parsed.tool_calls.append(call)
            continue
        text_buffer.append(line)

    if in_fence:
        parsed.incomplete = True
        return parsed
    _flush_text(parsed, text_buffer)
    return parsed


def format_tool_block(lines: list[str]) -> str:
    """Emit command lines as a fenced tool block that parses back to ``lines``."""
    body = "\n".join(line.strip() for line in lines if line.strip())
    return f"{FENCE}{TOOL_MARKER}\n{body}\n{FENCE}"


# --- System prompt ---


def tool_description(registry: ProviderRegistry) -> str:
    names = set()
    for provider in registry.base + registry.enabled:
        names.update(provider.names())
    if not names:
        return f"Execute a {TOOL_MARKER} command line."
    return (
        f"Execute {TOOL_MARKER} command lines. Available commands: "
        f"{', '.join(sorted(names))}."
        " Command output is shown to the user automatically,"
        " so do not repeat it unless asked."
    )


def detailed_usage(registry: ProviderRegistry) -> str:
    lines: list[str] = []
    for provider in registry.ordered():
        for name in sorted(provider.names()):
            lines.extend(provider.usage(name) or [name])
    return "\n".join(lines).strip()


def tool_instructions(registry: ProviderRegistry, delegated: bool = False) -> str:
    """System prompt describing the available commands and the call convention."""
    parts = [
        tool_description(registry),
        " You may interleave text with tool calls, but avoid it unless you need"
        " to explain something.",
        " If you do explain, keep it brief and place it immediately before the"
        " relevant tool call.",
        " To run commands, reply with a fenced block:\n"
        f"{format_tool_block(['<command line>'])}\n",
        f"A single command can also be written on its own line as"
        f" `{TOOL_MARKER}: <command line>`.",
        " For SQL commands, the command name is the verb; do not repeat it.",
        " Example: `select * from users` (not `select SELECT * from users`).",
        " End SQL statements with a semicolon.",
        f" To delegate a task, use:\n{format_tool_block(['agent delegate <prompt>'])}\n",
        "Delegated agents start fresh and cannot use continuation.",
        " Use one command per line inside the fenced block.",
        " If a command needs continuation (e.g., multi-line SQL), put the next"
        " line(s) immediately after it.",
        " You can define macros with `def <name> ... end`, list them with"
        " `macros`, and delete them with `undef <name>`.",
    ]
    if delegated:
        parts.append(
            " This is a delegated task with no follow-up; avoid leading questions"
            " at the end."
        )
    prompt = "".join(parts)
    usage = detailed_usage(registry)
    if usage:
        prompt += "\n\nCommand usage:\n" + usage
    return prompt
