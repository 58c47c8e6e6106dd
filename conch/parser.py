"""Command-line tokenizer."""

from dataclasses import dataclass

_QUOTES = ("'", '"')


@dataclass(frozen=True)
class ParsedCommand:
    """One tokenized input line: command name plus positional arguments."""

    raw: str
    name: str
    args: tuple[str, ...] = ()

    @property
    def tail(self) -> str:
        """Raw text after the command name, trimmed.

        Keeps the original spacing and newlines of the arguments, which is
        what SQL statements and `$@` substitution need.
        """
        index = self.raw.find(self.name)
        if index < 0:
            return ""
        return self.raw[index + len(self.name) :].strip()


def tokenize(line: str) -> list[str]:
    """Split a line on unquoted whitespace.

    Single and double quotes group characters (the quote itself is dropped).
    A backslash always consumes exactly the next character, inside quotes too.
    An unterminated quote simply ends at the end of the line.
    """
    tokens: list[str] = []
    current: list[str] = []
    quote = None
    escaping = False
    for ch in line:
        if escaping:
            current.append(ch)
            escaping = False
            continue
        if ch == "\\":
            escaping = True
            continue
        if quote is not None:
            if ch == quote:
                quote = None
            else:
                current.append(ch)
            continue
        if ch in _QUOTES:
            quote = ch
            continue
        if ch.isspace():
            if current:
                tokens.append("".join(current))
                current = []
            continue
        current.append(ch)
    if current:
        tokens.append("".join(current))
    return tokens


def parse_line(line: str | None) -> ParsedCommand | None:
    """Parse a raw line into a ParsedCommand, or None for blank input."""
    if line is None or not line.strip():
        return None
    tokens = tokenize(line)
    if not tokens:
        return None
    return ParsedCommand(raw=line, name=tokens[0], args=tuple(tokens[1:]))
