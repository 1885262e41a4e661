"""Messages shown when a turn calls tools but the model wrote no text.

Resolution order for each invocation:

1. a caller-supplied generator registered for the tool's name,
2. the first matching :class:`FallbackRule`, if rules were given,
3. the default message.

Each fragment ends with terminal punctuation and fragments are joined
with a single space, in invocation order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable

from sitepilot.message import ToolInvocation

GENERIC_FALLBACK = "I've made some changes. Take a look!"

MessageGenerator = Callable[[dict[str, Any]], str]


@dataclass(frozen=True)
class FallbackRule:
    """Formats a message for tool names the predicate accepts."""

    predicate: Callable[[str], bool]
    formatter: Callable[[str, dict[str, Any]], str]


def _primary_arg(args: dict[str, Any]) -> str:
    for value in args.values():
        return f" **{value}**" if isinstance(value, str) and value else ""
    return ""


def _name_contains(*keywords: str) -> Callable[[str], bool]:
    return lambda name: any(k in name for k in keywords)


def _prefixed(prefix: str) -> Callable[[str, dict[str, Any]], str]:
    return lambda name, args: f"{prefix}{_primary_arg(args)}."


def humanize_tool_call(name: str, args: dict[str, Any]) -> str:
    """``open_menu`` with ``{"id": "x"}`` becomes ``Open Menu: **x**.``"""
    readable = re.sub(r"\b\w", lambda m: m.group(0).upper(), name.replace("_", " "))
    arg = _primary_arg(args)
    return f"{readable}:{arg}." if arg else f"{readable}."


DEFAULT_RULES: tuple[FallbackRule, ...] = (
    FallbackRule(_name_contains("navigate", "scroll"), _prefixed("Navigated to")),
    FallbackRule(_name_contains("filter"), _prefixed("Filtered by")),
    FallbackRule(_name_contains("show", "open", "display"), _prefixed("Showing")),
    FallbackRule(_name_contains("search"), _prefixed("Searched for")),
    FallbackRule(_name_contains("select", "highlight"), _prefixed("Selected")),
    FallbackRule(lambda name: True, humanize_tool_call),
)


def _terminate(fragment: str) -> str:
    fragment = fragment.strip()
    if not fragment.endswith((".", "!", "?")):
        fragment += "."
    return fragment


class FallbackMessages:
    """Builds the fallback text for a list of tool invocations.

    Args:
        generators: Per-tool message generators keyed by tool name.
        rules: Ordered heuristics tried when no generator matches.
        default: Message used when neither a generator nor a rule applies.
    """

    def __init__(
        self,
        generators: dict[str, MessageGenerator] | None = None,
        rules: tuple[FallbackRule, ...] = (),
        default: str = GENERIC_FALLBACK,
    ):
        self.generators = dict(generators or {})
        self.rules = tuple(rules)
        self.default = default

    def fragment(self, invocation: ToolInvocation) -> str:
        generator = self.generators.get(invocation.name)
        if generator is not None:
            return _terminate(generator(invocation.args))
        for rule in self.rules:
            if rule.predicate(invocation.name):
                return _terminate(rule.formatter(invocation.name, invocation.args))
        return _terminate(self.default)

    def __call__(self, invocations: list[ToolInvocation]) -> str:
        return " ".join(self.fragment(inv) for inv in invocations)


def smart_fallback(
    generators: dict[str, MessageGenerator] | None = None,
) -> FallbackMessages:
    """FallbackMessages that guesses a message from the tool name."""
    return FallbackMessages(generators, rules=DEFAULT_RULES)
