"""Registry of upstream services the gateway forwards to."""

from collections.abc import Iterator
from dataclasses import dataclass
from types import MappingProxyType

from core.config import Config


@dataclass(frozen=True)
class Upstream:
    """A backend service reachable over HTTP."""

    name: str
    base_url: str
    path_prefixes: frozenset[str]
    health_path: str = "/health"


class UpstreamRegistry:
    """Read-only mapping of upstream name to Upstream, in declared order."""

    def __init__(self, upstreams: list[Upstream]) -> None:
        self._upstreams = MappingProxyType({upstream.name: upstream for upstream in upstreams})

    @classmethod
    def from_config(cls, config: Config) -> "UpstreamRegistry":
        upstreams = []
        for settings in config.upstreams:
            prefixes = set(settings.prefixes)
            prefixes.update(route.prefix for route in config.routes if route.upstream == settings.name)
            upstreams.append(
                Upstream(
                    name=settings.name,
                    base_url=settings.base_url,
                    path_prefixes=frozenset(prefixes),
                    health_path=settings.health_path,
                )
            )
        return cls(upstreams)

    def get(self, name: str) -> Upstream | None:
        return self._upstreams.get(name)

    def __iter__(self) -> Iterator[Upstream]:
        return iter(self._upstreams.values())

    def __len__(self) -> int:
        return len(self._upstreams)

    def __contains__(self, name: object) -> bool:
        return name in self._upstreams
