"""Detection, redaction and blocking of sensitive data in text."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping

DEFAULT_REPLACEMENT = "[SENSITIVE DATA REDACTED]"
DEFAULT_PATTERNS = ("otp_codes", "verification_links", "api_keys")


class FilterAction(Enum):
    """What to do when sensitive data is found."""

    REDACT = "redact"
    BLOCK = "block"
    ASK = "ask"
    LOG = "log"

    def __str__(self) -> str:
        return self.value


def parse_action(text: str) -> FilterAction:
    """Map a name to a FilterAction; unknown names block, for safety."""
    try:
        return FilterAction(text)
    except ValueError:
        return FilterAction.BLOCK


@dataclass
class CustomPattern:
    name: str
    pattern: str
    description: str = ""


@dataclass
class FilterConfig:
    enabled: bool = False
    patterns: list[str] = field(default_factory=list)
    custom_patterns: list[CustomPattern] = field(default_factory=list)
    action: FilterAction = FilterAction.REDACT
    replacement: str = ""


def default_config() -> FilterConfig:
    """Filtering on, with the common patterns, blocking on a match."""
    return FilterConfig(
        enabled=True,
        patterns=list(DEFAULT_PATTERNS),
        action=FilterAction.BLOCK,
        replacement=DEFAULT_REPLACEMENT,
    )


@dataclass(frozen=True)
class Pattern:
    name: str
    regex: re.Pattern
    description: str = ""


@dataclass(frozen=True)
class Match:
    pattern: str
    start: int
    end: int
    value: str


class Filter:
    """Scans content with named patterns and redacts what they find."""

    def __init__(
        self,
        config: FilterConfig,
        builtins: Mapping[str, Pattern] | None = None,
    ) -> None:
        self._enabled = config.enabled
        self._action = config.action
        self.replacement = config.replacement
        self.patterns: list[Pattern] = []

        if not config.enabled:
            return

        if not self.replacement:
            self.replacement = DEFAULT_REPLACEMENT

        known = builtins or {}
        names = config.patterns
        if not names and not config.custom_patterns:
            names = list(DEFAULT_PATTERNS)

        for name in names:
            if name not in known:
                raise ValueError(f"unknown pattern: {name!r}")
            self.patterns.append(known[name])

        for custom in config.custom_patterns:
            try:
                regex = re.compile(custom.pattern)
            except re.error as exc:
                raise ValueError(f"invalid regex for pattern {custom.name!r}: {exc}") from exc
            self.patterns.append(Pattern(custom.name, regex, custom.description))

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def action(self) -> FilterAction:
        return self._action

    def scan(self, content: str) -> list[Match]:
        """Return every match in ``content``, ordered by start position.

        When a pattern has a capture group that took part in the match, the
        group's span is reported instead of the whole match.
        """
        if not self._enabled or not content:
            return []
        found: list[Match] = []
        for pattern in self.patterns:
            for hit in pattern.regex.finditer(content):
                start, end = hit.span()
                if pattern.regex.groups >= 1 and hit.start(1) >= 0:
                    start, end = hit.span(1)
                found.append(Match(pattern.name, start, end, content[start:end]))
        found.sort(key=lambda m: m.start)
        return found

    def apply(self, content: str, matches: Iterable[Match]) -> str:
        """Replace each matched span with the replacement text."""
        ordered = sorted(matches, key=lambda m: m.start, reverse=True)
        if not ordered:
            return content
        result = content
        seen: set[tuple[int, int]] = set()
        for m in ordered:
            span = (m.start, m.end)
            if span in seen:
                continue
            seen.add(span)
            if 0 <= m.start < m.end <= len(result):
                result = result[:m.start] + self.replacement + result[m.end:]
        return result

    def should_block(self, matches: list[Match]) -> bool:
        return self._action is FilterAction.BLOCK and bool(matches)

    def should_ask(self, matches: list[Match]) -> bool:
        return self._action is FilterAction.ASK and bool(matches)


def match_description(matches: Iterable[Match]) -> str:
    """Summarise matches by pattern name, with counts where above one."""
    counts = Counter(m.pattern for m in matches)
    if not counts:
        return "no sensitive data detected"
    parts = [name if count == 1 else f"{name} ({count})" for name, count in counts.items()]
    return "sensitive data detected: " + ", ".join(parts)