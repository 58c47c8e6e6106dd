"""Command providers and the overlay registry that resolves parsed lines to them."""

from typing import Callable, Iterable

from .context import CommandResult, ExecutionContext
from .parser import ParsedCommand

Executable = Callable[[ExecutionContext], CommandResult | None]


class CommandProvider:
    """A family of commands.

    Subclasses implement ``names`` and ``build``; ``supports`` defaults to a
    name lookup. Identity (not equality) decides enable/disable membership.
    """

    label = "provider"

    def names(self) -> set[str]:
        return set()

    def supports(self, cmd: ParsedCommand) -> bool:
        return cmd.name in self.names()

    def build(self, cmd: ParsedCommand) -> Executable:
        raise NotImplementedError

    def subcommands(self, name: str) -> list[str]:
        return []

    def usage(self, name: str) -> list[str]:
        return [name]

    def describe(self, name: str) -> dict[str, str]:
        return {}

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.label}>"


def _without(providers: Iterable[CommandProvider], drop: CommandProvider) -> tuple:
    return tuple(p for p in providers if p is not drop)


def _contains(providers: Iterable[CommandProvider], target: CommandProvider) -> bool:
    return any(p is target for p in providers)


class ProviderRegistry:
    """Immutable provider set with ``enabled`` and ``disabled`` overlays over ``base``."""

    def __init__(
        self,
        base: Iterable[CommandProvider],
        enabled: Iterable[CommandProvider] = (),
        disabled: Iterable[CommandProvider] = (),
    ):
        self.base = tuple(base)
        self.enabled = tuple(enabled)
        self.disabled = tuple(disabled)

    def _search_order(self) -> list[CommandProvider]:
        order: list[CommandProvider] = []
        for provider in self.enabled + self.base:
            if _contains(self.disabled, provider) or _contains(order, provider):
                continue
            order.append(provider)
        return order

    def find(self, cmd: ParsedCommand) -> Executable | None:
        """Resolve a parsed command to an executable, or None when nothing matches."""
        for provider in self._search_order():
            if provider.supports(cmd):
                return provider.build(cmd)
        return None

    def enable(self, provider: CommandProvider) -> "ProviderRegistry":
        enabled = self.enabled
        if not _contains(enabled, provider):
            enabled = enabled + (provider,)
        return ProviderRegistry(self.base, enabled, _without(self.disabled, provider))

    def disable(self, provider: CommandProvider) -> "ProviderRegistry":
        disabled = self.disabled
        if not _contains(disabled, provider):
            disabled = disabled + (provider,)
        return ProviderRegistry(self.base, _without(self.enabled, provider), disabled)

    # -- Introspection -------------------------------------------------------

    def ordered(self) -> list[CommandProvider]:
        """Enabled, then base, then disabled providers, each listed once."""
        seen: list[CommandProvider] = []
        for provider in self.enabled + self.base + self.disabled:
            if not _contains(seen, provider):
                seen.append(provider)
        return seen

    def find_by_label(self, label: str) -> CommandProvider | None:
        wanted = label.strip().lower()
        for provider in self.ordered():
            if provider.label.lower() == wanted:
                return provider
        return None

    def provider_for(self, name: str) -> CommandProvider | None:
        """First provider in ``ordered()`` that declares ``name``, disabled ones included."""
        for provider in self.ordered():
            if name in provider.names():
                return provider
        return None

    def command_names(self) -> list[str]:
        names: set[str] = set()
        for provider in self._search_order():
            names.update(provider.names())
        return sorted(names)

    def subcommands(self, name: str) -> list[str]:
        result: list[str] = []
        for provider in self.enabled + self.base:
            if name not in provider.names():
                continue
            for sub in provider.subcommands(name):
                if sub not in result:
                    result.append(sub)
        return result

    def state(self, provider: CommandProvider) -> str:
        if _contains(self.disabled, provider):
            return "disabled"
        if _contains(self.enabled, provider):
            return "enabled"
        return "default"
