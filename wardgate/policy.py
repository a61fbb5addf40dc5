"""Rule evaluation: first matching rule decides, with time windows and rate limits."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable

from wardgate.ratelimit import Registry

DEFAULT_WINDOW = 60.0

_DAY_NAMES = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = r"(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:ns|us|µs|μs|ms|s|m|h)"
_DURATION_RE = re.compile(rf"([+-]?)((?:{_DURATION_PART})+|0)")
_PART_RE = re.compile(r"([0-9]+(?:\.[0-9]*)?|\.[0-9]+)(ns|us|µs|μs|ms|s|m|h)")


class Action(Enum):
    """Outcome of evaluating a request against the rules."""

    ALLOW = "allow"
    DENY = "deny"
    ASK = "ask"
    QUEUE = "queue"
    RATE_LIMITED = "rate_limited"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Decision:
    action: Action
    message: str = ""


@dataclass
class Match:
    method: str = ""
    path: str = ""


@dataclass
class TimeRange:
    hours: list[str] = field(default_factory=list)
    days: list[str] = field(default_factory=list)


@dataclass
class RateLimit:
    max_requests: int = 0
    window: str = ""


@dataclass
class Rule:
    match: Match = field(default_factory=Match)
    action: str = ""
    message: str = ""
    time_range: TimeRange | None = None
    rate_limit: RateLimit | None = None


class Engine:
    """Evaluates requests against an ordered list of rules."""

    def __init__(
        self,
        rules: Iterable[Rule] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.rules = list(rules or [])
        self._clock = clock or datetime.now
        self._rate_limits: dict[int, Registry] = {
            index: Registry(rule.rate_limit.max_requests, parse_window(rule.rate_limit.window))
            for index, rule in enumerate(self.rules)
            if rule.rate_limit is not None and rule.rate_limit.max_requests > 0
        }

    def evaluate(self, method: str, path: str) -> Decision:
        """Evaluate with the shared default rate-limit key."""
        return self.evaluate_with_key(method, path, "default")

    def evaluate_with_key(self, method: str, path: str, key: str) -> Decision:
        """Evaluate a request; ``key`` selects the rate-limit bucket."""
        for index, rule in enumerate(self.rules):
            if not _matches(rule, method, path):
                continue
            if rule.time_range is not None and not self._in_time_range(rule.time_range):
                continue
            registry = self._rate_limits.get(index)
            if registry is not None and not registry.allow(key):
                return Decision(Action.RATE_LIMITED, "rate limit exceeded")
            return Decision(parse_action(rule.action), rule.message)
        return Decision(Action.DENY, "no matching rule - default deny")

    def _in_time_range(self, time_range: TimeRange) -> bool:
        now = self._clock()
        if time_range.days:
            today = _DAY_NAMES[now.weekday()]
            if not any(day.lower() == today for day in time_range.days):
                return False
        if time_range.hours:
            current = now.hour * 60 + now.minute
            ranges = (_parse_hour_range(text) for text in time_range.hours)
            if not any(r is not None and r[0] <= current <= r[1] for r in ranges):
                return False
        return True


def _matches(rule: Rule, method: str, path: str) -> bool:
    wanted = rule.match.method
    if wanted and wanted != "*" and wanted != method:
        return False
    if rule.match.path and not match_path(rule.match.path, path):
        return False
    return True


def match_path(pattern: str, path: str) -> bool:
    """Exact comparison, or glob matching when the pattern holds ``*``."""
    if "*" in pattern:
        return match_glob(pattern, path)
    return pattern == path


def match_glob(pattern: str, path: str) -> bool:
    """Match ``path`` against a glob.

    ``*`` matches one segment, ``**`` any number of segments, and a trailing
    single ``*`` matches any path starting with what precedes it.
    """
    if pattern.endswith("*") and not pattern.endswith("**"):
        prefix = pattern[:-1]
        if prefix.endswith("/"):
            prefix = prefix[:-1]
        return path.startswith(prefix)

    pattern_parts = pattern.strip("/").split("/")
    path_parts = path.strip("/").split("/")

    pi = 0
    for i, segment in enumerate(path_parts):
        if pi >= len(pattern_parts):
            return False
        part = pattern_parts[pi]
        if part == "**":
            if pi == len(pattern_parts) - 1:
                return True
            rest = "/".join(pattern_parts[pi + 1:])
            return any(
                match_glob(rest, "/".join(path_parts[j:]))
                for j in range(i, len(path_parts) + 1)
            )
        if part != "*" and part != segment:
            return False
        pi += 1
    return pi == len(pattern_parts)


def _parse_hour_range(text: str) -> tuple[int, int] | None:
    parts = text.split("-")
    if len(parts) != 2:
        return None
    start = _parse_time_of_day(parts[0])
    end = _parse_time_of_day(parts[1])
    if start is None or end is None:
        return None
    return start, end


def _parse_time_of_day(text: str) -> int | None:
    parts = text.strip().split(":")
    if len(parts) != 2:
        return None
    hours, minutes = parts
    if not re.fullmatch(r"[0-9]{1,2}", hours) or int(hours) > 23:
        return None
    if not re.fullmatch(r"[0-9]{2}", minutes) or int(minutes) > 59:
        return None
    return int(hours) * 60 + int(minutes)


def parse_window(text: str) -> float:
    """Parse a duration such as ``"1m"`` or ``"1h30m"`` into seconds.

    Empty or malformed input gives one minute.
    """
    if not text:
        return DEFAULT_WINDOW
    found = _DURATION_RE.fullmatch(text)
    if found is None:
        return DEFAULT_WINDOW
    sign, body = found.groups()
    if body == "0":
        return 0.0
    total = sum(float(amount) * _UNIT_SECONDS[unit] for amount, unit in _PART_RE.findall(body))
    return -total if sign == "-" else total


def parse_action(action: str) -> Action:
    """Map a rule's action name to an Action; unknown names deny."""
    return {
        "allow": Action.ALLOW,
        "deny": Action.DENY,
        "ask": Action.ASK,
        "queue": Action.QUEUE,
    }.get(action, Action.DENY)