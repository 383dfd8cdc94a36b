"""Header filtering for proxied requests and responses."""

from collections.abc import Iterable

from core.request_types import ProxiedRequest

# RFC 9110 hop-by-hop headers (must not be forwarded)
HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)


def strip_hop_by_hop(headers: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    """Drop hop-by-hop headers, including any listed in Connection."""
    headers = list(headers)
    dropped = set(HOP_BY_HOP)
    for key, value in headers:
        if key.lower() == "connection":
            dropped.update(token.strip().lower() for token in value.split(",") if token.strip())
    return [(key, value) for key, value in headers if key.lower() not in dropped]


class HeaderBuilder:
    """Build header sets for both legs of a proxied call."""

    def build_upstream_headers(self, request: ProxiedRequest) -> list[tuple[str, str]]:
        """Filter inbound headers and add X-Forwarded-* for the upstream."""
        upstream = [
            (key, value)
            for key, value in strip_hop_by_hop(request.headers)
            if key.lower() not in ("host", "x-forwarded-for", "x-forwarded-proto", "x-forwarded-host")
        ]
        prior = request.header("x-forwarded-for")
        forwarded_for = f"{prior}, {request.client_address}" if prior else request.client_address
        upstream.append(("x-forwarded-for", forwarded_for))
        upstream.append(("x-forwarded-proto", request.header("x-forwarded-proto") or request.scheme))
        host = request.header("x-forwarded-host") or request.host
        if host:
            upstream.append(("x-forwarded-host", host))
        return upstream

    def build_client_headers(self, headers: Iterable[tuple[str, str]]) -> list[tuple[bytes, bytes]]:
        """Filter upstream response headers into raw ASGI header pairs."""
        return [
            (key.lower().encode("latin-1"), value.encode("latin-1"))
            for key, value in strip_hop_by_hop(headers)
        ]
