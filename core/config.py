"""Configuration models and loading."""

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from core.exceptions import ConfigurationError

CONFIG_DIR = Path.home() / ".config" / "service-gateway"
CONFIG_FILE = CONFIG_DIR / "config.json"
CONFIG_FILE_ENV = "GATEWAY_CONFIG_FILE"


def _check_path(value: str) -> str:
    if not value.startswith("/"):
        raise ValueError(f"path prefix must start with '/': {value!r}")
    return value


class _Settings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ProxySettings(_Settings):
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)
    request_timeout: float = Field(default=30.0, gt=0)
    connect_timeout: float = Field(default=5.0, gt=0)
    max_body_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    keep_alive_timeout: int = 5
    allowed_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])


class LimitsSettings(_Settings):
    max_connections: int = Field(default=100, gt=0)
    max_keepalive_connections: int = Field(default=20, ge=0)


class UpstreamSettings(_Settings):
    name: str = Field(min_length=1)
    base_url: str
    prefixes: list[str] = Field(default_factory=list)
    health_path: str = "/health"

    @field_validator("base_url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL: {value!r}")
        return value.rstrip("/")

    @field_validator("prefixes")
    @classmethod
    def _prefixes(cls, value: list[str]) -> list[str]:
        return [_check_path(prefix) for prefix in value]

    @field_validator("health_path")
    @classmethod
    def _health_path(cls, value: str) -> str:
        return _check_path(value)


class RouteSettings(_Settings):
    prefix: str
    upstream: str
    rewrite: str | None = None

    @field_validator("prefix")
    @classmethod
    def _prefix(cls, value: str) -> str:
        return _check_path(value)

    @field_validator("rewrite")
    @classmethod
    def _rewrite(cls, value: str | None) -> str | None:
        return value if value is None else _check_path(value)


class RateLimitSettings(_Settings):
    enabled: bool = True
    window_ms: int = Field(default=15 * 60 * 1000, gt=0)
    max_requests: int = Field(default=300, gt=0)
    max_buckets: int = Field(default=10_000, gt=0)
    trust_forwarded_for: bool = False


class HealthSettings(_Settings):
    timeout: float = Field(default=2.0, gt=0)


def default_upstreams() -> list[UpstreamSettings]:
    return [
        UpstreamSettings(
            name="user",
            base_url="http://user-service:3001",
            prefixes=["/api/users", "/api/auth"],
        ),
        UpstreamSettings(
            name="product",
            base_url="http://product-service:3002",
            prefixes=["/api/products", "/api/categories", "/api/inventory"],
        ),
        UpstreamSettings(
            name="order",
            base_url="http://order-service:3003",
            prefixes=["/api/orders", "/api/cart"],
        ),
    ]


class Config(_Settings):
    proxy: ProxySettings = Field(default_factory=ProxySettings)
    limits: LimitsSettings = Field(default_factory=LimitsSettings)
    upstreams: list[UpstreamSettings] = Field(default_factory=default_upstreams)
    routes: list[RouteSettings] = Field(default_factory=list)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    health: HealthSettings = Field(default_factory=HealthSettings)

    @model_validator(mode="after")
    def _check_references(self) -> "Config":
        names = [upstream.name for upstream in self.upstreams]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate upstream names: {', '.join(duplicates)}")
        if not names:
            raise ValueError("at least one upstream must be configured")
        for route in self.routes:
            if route.upstream not in names:
                raise ValueError(
                    f"route {route.prefix!r} references unknown upstream {route.upstream!r}"
                )
        return self


def config_path(environ: Mapping[str, str] | None = None) -> Path:
    """Return the config file location, honouring GATEWAY_CONFIG_FILE."""
    environ = os.environ if environ is None else environ
    override = environ.get(CONFIG_FILE_ENV)
    return Path(override).expanduser() if override else CONFIG_FILE


def load_config(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from JSON file, creating default if needed.

    Environment variables are applied on top of the file contents. Any invalid
    value raises ConfigurationError; the gateway must not start serving with a
    broken configuration.
    """
    environ = os.environ if environ is None else environ
    path = path or config_path(environ)

    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(Config().model_dump_json(indent=2))

    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{path}: invalid JSON ({e})") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top-level value must be an object")

    data = _apply_environment(data, environ)
    try:
        return Config.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"{path}: {e}") from e


def _apply_environment(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Overlay environment variables on the raw config mapping."""
    data = dict(data)
    proxy = _section(data, "proxy")
    rate_limit = _section(data, "rate_limit")
    health = _section(data, "health")

    if "PORT" in environ:
        proxy["port"] = _env_number(environ, "PORT", int)
    if "ALLOWED_ORIGINS" in environ:
        proxy["allowed_origins"] = [
            origin.strip() for origin in environ["ALLOWED_ORIGINS"].split(",") if origin.strip()
        ]
    if "GATEWAY_RATE_LIMIT_ENABLED" in environ:
        rate_limit["enabled"] = environ["GATEWAY_RATE_LIMIT_ENABLED"] != "0"
    if "GATEWAY_RATE_LIMIT_MAX" in environ:
        rate_limit["max_requests"] = _env_number(environ, "GATEWAY_RATE_LIMIT_MAX", int)
    if "GATEWAY_RATE_LIMIT_WINDOW_MS" in environ:
        rate_limit["window_ms"] = _env_number(environ, "GATEWAY_RATE_LIMIT_WINDOW_MS", int)
    if "GATEWAY_HEALTH_TIMEOUT" in environ:
        health["timeout"] = _env_number(environ, "GATEWAY_HEALTH_TIMEOUT", float)

    if "upstreams" not in data:
        data["upstreams"] = [upstream.model_dump() for upstream in default_upstreams()]
    if isinstance(data["upstreams"], list):
        upstreams = []
        for upstream in data["upstreams"]:
            if isinstance(upstream, dict) and "name" in upstream:
                env_key = f"{str(upstream['name']).upper().replace('-', '_')}_SERVICE_URL"
                if env_key in environ:
                    upstream = {**upstream, "base_url": environ[env_key]}
            upstreams.append(upstream)
        data["upstreams"] = upstreams

    data["proxy"] = proxy
    data["rate_limit"] = rate_limit
    data["health"] = health
    return data


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"{key}: expected an object, got {type(value).__name__}")
    return dict(value)


def _env_number(environ: Mapping[str, str], key: str, cast: type) -> Any:
    try:
        return cast(environ[key])
    except ValueError as e:
        raise ConfigurationError(f"{key}: expected a number, got {environ[key]!r}") from e
