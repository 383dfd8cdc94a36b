"""
Unit tests for path routing
"""

import pytest

from conftest import make_config
from core.config import RouteSettings
from core.exceptions import ConfigurationError
from core.registry import UpstreamRegistry
from core.router import (
    PathRouter,
    RouteMatch,
    RouteNotFound,
    RouteRule,
    RouteTable,
    remove_dot_segments,
)


def build_router(config) -> PathRouter:
    registry = UpstreamRegistry.from_config(config)
    return PathRouter(RouteTable.from_config(config, registry), registry)


class TestRouteRule:
    def test_matches_on_segment_boundary(self):
        rule = RouteRule("/api/cart", "order")
        assert rule.matches("/api/cart")
        assert rule.matches("/api/cart/")
        assert rule.matches("/api/cart/items/3")
        assert not rule.matches("/api/carts")
        assert not rule.matches("/api")

    def test_trailing_slash_prefix(self):
        rule = RouteRule("/api/cart/", "order")
        assert rule.matches("/api/cart")
        assert rule.matches("/api/cart/1")

    def test_root_prefix_matches_everything(self):
        rule = RouteRule("/", "user")
        assert rule.matches("/")
        assert rule.matches("/anything/at/all")

    def test_identity_rewrite_preserves_path(self):
        rule = RouteRule("/api/products", "product")
        assert rule.rewrite_path("/api/products/7") == "/api/products/7"

    def test_rewrite_substitutes_prefix(self):
        rule = RouteRule("/api/v2/products", "product", rewrite="/products")
        assert rule.rewrite_path("/api/v2/products/7") == "/products/7"
        assert rule.rewrite_path("/api/v2/products") == "/products"

    def test_rewrite_to_root(self):
        rule = RouteRule("/api/users", "user", rewrite="/")
        assert rule.rewrite_path("/api/users") == "/"
        assert rule.rewrite_path("/api/users/42") == "/42"


class TestPathRouter:
    def test_resolves_product_path(self, config):
        match = build_router(config).resolve("/api/products/7")
        assert isinstance(match, RouteMatch)
        assert match.upstream.name == "product"
        assert match.path == "/api/products/7"

    def test_unknown_path_is_not_found(self, config):
        result = build_router(config).resolve("/api/unknown")
        assert result == RouteNotFound(path="/api/unknown")

    def test_similar_prefix_is_not_found(self, config):
        assert isinstance(build_router(config).resolve("/api/productsx"), RouteNotFound)

    @pytest.mark.parametrize(
        "path,expected",
        [
            ("/api/users/1", "user"),
            ("/api/auth/login", "user"),
            ("/api/products", "product"),
            ("/api/categories/3", "product"),
            ("/api/inventory/9/stock", "product"),
        ],
    )
    def test_disjoint_prefixes_never_cross(self, config, path, expected):
        match = build_router(config).resolve(path)
        assert match.upstream.name == expected

    def test_longest_prefix_wins_regardless_of_declaration_order(self):
        config = make_config(
            routes=[
                RouteSettings(prefix="/api", upstream="user"),
                RouteSettings(prefix="/api/products/featured", upstream="user", rewrite="/featured"),
            ]
        )
        router = build_router(config)
        assert router.resolve("/api/products/featured/1").path == "/featured/1"
        assert router.resolve("/api/products/1").upstream.name == "product"
        assert router.resolve("/api/other").upstream.name == "user"

    def test_equal_prefixes_resolve_to_first_declared(self):
        config = make_config(
            routes=[
                RouteSettings(prefix="/api/search", upstream="product"),
                RouteSettings(prefix="/api/search", upstream="user"),
            ]
        )
        for _ in range(5):
            assert build_router(config).resolve("/api/search").upstream.name == "product"

    def test_explicit_route_declared_before_upstream_prefix(self):
        config = make_config(routes=[RouteSettings(prefix="/api/users", upstream="product")])
        assert build_router(config).resolve("/api/users/1").upstream.name == "product"

    def test_dot_segments_are_resolved_before_matching(self, config):
        match = build_router(config).resolve("/api/users/../products/7")
        assert match.upstream.name == "product"
        assert match.path == "/api/products/7"

    def test_dot_segments_cannot_escape_to_unrouted_path(self, config):
        result = build_router(config).resolve("/api/users/../../admin")
        assert result == RouteNotFound(path="/admin")


class TestRemoveDotSegments:
    @pytest.mark.parametrize(
        "path,expected",
        [
            ("/api/products/7", "/api/products/7"),
            ("/api/./products", "/api/products"),
            ("/api/users/../products", "/api/products"),
            ("/api/products/..", "/api/"),
            ("/api/products/.", "/api/products/"),
            ("/../../api", "/api"),
            ("/api/../..", "/"),
            ("/api/.../x", "/api/.../x"),
        ],
    )
    def test_remove_dot_segments(self, path, expected):
        assert remove_dot_segments(path) == expected


class TestRouteTable:
    def test_unknown_upstream_is_configuration_error(self, config):
        registry = UpstreamRegistry.from_config(config)
        bogus = config.model_copy(
            update={"routes": [RouteSettings(prefix="/api/x", upstream="ghost")]}
        )
        with pytest.raises(ConfigurationError):
            RouteTable.from_config(bogus, registry)

    def test_precedence_order(self):
        config = make_config(routes=[RouteSettings(prefix="/api/products/top", upstream="user")])
        registry = UpstreamRegistry.from_config(config)
        ordered = RouteTable.from_config(config, registry).by_precedence()
        assert ordered[0].match_prefix == "/api/products/top"
        lengths = [len(rule.normalized_prefix) for rule in ordered]
        assert lengths == sorted(lengths, reverse=True)
