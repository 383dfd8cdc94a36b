"""Request routing logic - maps a request path to an upstream service.

Precedence: the longest matching prefix wins. Rules with the same prefix
resolve to the one declared first. Explicit ``routes`` entries are declared
before the prefixes listed on each upstream. Paths are matched after "." and
".." segments are resolved, so the path that is routed is the path that is sent.
"""

from dataclasses import dataclass

from core.config import Config
from core.exceptions import ConfigurationError
from core.registry import Upstream, UpstreamRegistry


def remove_dot_segments(path: str) -> str:
    """Resolve "." and ".." segments (RFC 3986 section 5.2.4)."""
    segments = path.split("/")
    if "." not in segments and ".." not in segments:
        return path
    output: list[str] = []
    for segment in segments[1:]:
        if segment == "..":
            if output:
                output.pop()
        elif segment != ".":
            output.append(segment)
    normalized = "/" + "/".join(output)
    if segments[-1] in (".", "..") and not normalized.endswith("/"):
        normalized += "/"
    return normalized


@dataclass(frozen=True)
class RouteRule:
    """Prefix rule pointing at an upstream."""

    match_prefix: str
    upstream_name: str
    rewrite: str | None = None

    @property
    def normalized_prefix(self) -> str:
        return self.match_prefix.rstrip("/")

    def matches(self, path: str) -> bool:
        """Match on whole path segments: /api/cart matches /api/cart/1, not /api/carts."""
        prefix = self.normalized_prefix
        if not prefix:
            return path.startswith("/")
        return path == prefix or path.startswith(prefix + "/")

    def rewrite_path(self, path: str) -> str:
        """Substitute the matched prefix with the rewrite target."""
        if self.rewrite is None:
            return path
        rewritten = self.rewrite.rstrip("/") + path[len(self.normalized_prefix):]
        if not rewritten.startswith("/"):
            rewritten = "/" + rewritten
        return rewritten


@dataclass(frozen=True)
class RouteMatch:
    """Resolved route for a request."""

    rule: RouteRule
    upstream: Upstream
    path: str


@dataclass(frozen=True)
class RouteNotFound:
    """No rule matched the request path."""

    path: str


class RouteTable:
    """Immutable, ordered list of route rules."""

    def __init__(self, rules: list[RouteRule]) -> None:
        self._rules = tuple(rules)

    @classmethod
    def from_config(cls, config: Config, registry: UpstreamRegistry) -> "RouteTable":
        """Build the table; an unknown upstream reference is fatal."""
        rules = [
            RouteRule(route.prefix, route.upstream, route.rewrite)
            for route in config.routes
        ]
        for upstream in config.upstreams:
            rules.extend(RouteRule(prefix, upstream.name) for prefix in upstream.prefixes)

        for rule in rules:
            if rule.upstream_name not in registry:
                raise ConfigurationError(
                    f"route {rule.match_prefix!r} references unknown upstream {rule.upstream_name!r}"
                )
        return cls(rules)

    @property
    def rules(self) -> tuple[RouteRule, ...]:
        return self._rules

    def by_precedence(self) -> list[RouteRule]:
        """Rules in evaluation order: longest prefix first, then declared order."""
        return sorted(self._rules, key=lambda rule: -len(rule.normalized_prefix))


class PathRouter:
    """Resolve request paths against a route table. Pure, no side effects."""

    def __init__(self, table: RouteTable, registry: UpstreamRegistry) -> None:
        self._ordered = [
            (rule, registry.get(rule.upstream_name)) for rule in table.by_precedence()
        ]

    def resolve(self, path: str) -> RouteMatch | RouteNotFound:
        """Return the matching route or RouteNotFound."""
        path = remove_dot_segments(path)
        for rule, upstream in self._ordered:
            if rule.matches(path):
                rewritten = remove_dot_segments(rule.rewrite_path(path))
                return RouteMatch(rule=rule, upstream=upstream, path=rewritten)
        return RouteNotFound(path=path)
