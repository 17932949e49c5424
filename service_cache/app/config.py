"""
Cache settings and startup validation.

Settings are read once at process start and never mutated afterwards.
Invalid values raise ConfigError, which is the only error allowed to halt
startup.
"""

from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import AliasChoices, Field, ValidationError
from pydantic_settings import SettingsConfigDict

from shared.config import BaseConfig
from shared.errors import ConfigError

PROVIDERS = ("memory", "redis", "redis-cluster")
REDACTED = "redacted"

_BOOLEAN_KEYS = (
    "debug",
    "allow_stale",
    "cache_headers",
    "cache_authorized_requests",
    "auto_purge_cache",
    "auto_purge_cache_on_start",
)
_NUMBER_KEYS = (
    "max",
    "ttl",
    "size",
    "cache_get_timeout_in_ms",
    "cache_set_timeout_in_ms",
)
_STRING_LIST_KEYS = (
    "cacheable_routes",
    "exclude_routes",
    "cache_headers_deny_list",
    "cache_headers_allow_list",
)


class CacheSettings(BaseConfig):
    """Response cache configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CACHE_",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    debug: bool = False
    provider: str = "memory"

    # Memory provider bounds
    max: int = 1000
    ttl: int = 1000 * 60 * 60
    size: int = 1024 * 1024 * 10
    allow_stale: bool = False

    # Route guards
    cacheable_routes: List[str] = Field(default_factory=list)
    exclude_routes: List[str] = Field(default_factory=list)

    # Remote providers
    redis_config: Optional[Union[str, Dict[str, Any]]] = Field(
        default=None,
        validation_alias=AliasChoices("redis_config", "cache_redis_config", "redis_url"),
    )
    redis_cluster_nodes: List[Dict[str, Any]] = Field(default_factory=list)
    redis_cluster_options: Dict[str, Any] = Field(default_factory=dict)
    redis_key_prefix: str = "response-cache:"

    # Header capture
    cache_headers: bool = True
    cache_headers_deny_list: List[str] = Field(default_factory=list)
    cache_headers_allow_list: List[str] = Field(default_factory=list)
    cache_authorized_requests: bool = False

    # Timeouts (milliseconds)
    cache_get_timeout_in_ms: int = 1000
    cache_set_timeout_in_ms: int = 1000

    # Purging
    auto_purge_cache: bool = True
    auto_purge_cache_on_start: bool = True

    # Mount points of the fronted content API
    rest_prefix: str = "/api"
    graphql_path: str = "/graphql"

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "CacheSettings":
        """Validate a raw mapping and build settings from it."""
        validate_cache_config(raw)
        try:
            return cls(**dict(raw))
        except ValidationError as exc:
            raise ConfigError(_describe_validation_error(exc)) from exc

    @property
    def get_timeout_seconds(self) -> float:
        return self.cache_get_timeout_in_ms / 1000

    @property
    def set_timeout_seconds(self) -> float:
        return self.cache_set_timeout_in_ms / 1000

    def sanitized(self) -> Dict[str, Any]:
        """Config with remote-backend credentials redacted."""
        data = self.model_dump(exclude={"env", "log_level"})
        if data.get("redis_config") is not None:
            data["redis_config"] = REDACTED
        if data.get("redis_cluster_options"):
            data["redis_cluster_options"] = REDACTED
        return data


def _is_bool(value: Any) -> bool:
    return isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_string_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def _is_cluster_node(value: Any) -> bool:
    return isinstance(value, dict) and "host" in value and "port" in value


def validate_cache_config(raw: Mapping[str, Any]) -> None:
    """Check a raw configuration mapping, raising ConfigError on the first problem.

    Absent keys fall back to their defaults and are not checked here.
    """
    for key in _BOOLEAN_KEYS:
        if key in raw and not _is_bool(raw[key]):
            raise ConfigError(f"Invalid config: {key} must be a boolean")

    for key in _NUMBER_KEYS:
        if key in raw and not _is_number(raw[key]):
            raise ConfigError(f"Invalid config: {key} must be a number")

    for key in _STRING_LIST_KEYS:
        if key in raw and not _is_string_list(raw[key]):
            raise ConfigError(f"Invalid config: {key} must be a string array")

    provider = raw.get("provider", "memory")
    if not isinstance(provider, str):
        raise ConfigError("Invalid config: provider must be a string")
    if provider not in PROVIDERS:
        raise ConfigError("Invalid config: provider must be 'memory', 'redis' or 'redis-cluster'")

    nodes = raw.get("redis_cluster_nodes", [])
    if not isinstance(nodes, list) or not all(_is_cluster_node(node) for node in nodes):
        raise ConfigError(
            "Invalid config: redis_cluster_nodes must be a list of objects with keys 'host' and 'port'"
        )

    if "redis_cluster_options" in raw and not isinstance(raw["redis_cluster_options"], dict):
        raise ConfigError("Invalid config: redis_cluster_options must be an object")

    if "redis_key_prefix" in raw and not isinstance(raw["redis_key_prefix"], str):
        raise ConfigError("Invalid config: redis_key_prefix must be a string")

    if provider == "redis":
        redis_config = raw.get("redis_config")
        if redis_config is None:
            raise ConfigError("Invalid config: redis_config must be set when using redis provider")
        if not isinstance(redis_config, (str, dict)):
            raise ConfigError(
                "Invalid config: redis_config must be a string or object when using redis provider"
            )

    if provider == "redis-cluster" and not nodes:
        raise ConfigError(
            "Invalid config: redis_cluster_nodes must be set when using redis-cluster provider"
        )

    for key in ("rest_prefix", "graphql_path"):
        if key in raw:
            value = raw[key]
            if not isinstance(value, str) or not value.startswith("/"):
                raise ConfigError(f"Invalid config: {key} must be a path starting with '/'")


def _describe_validation_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "config"
    return f"Invalid config: {location} {first.get('msg', 'is invalid')}"


def get_cache_settings() -> CacheSettings:
    """Load settings from the environment and validate them."""
    try:
        settings = CacheSettings()
    except ValidationError as exc:
        raise ConfigError(_describe_validation_error(exc)) from exc

    validate_cache_config(settings.model_dump())
    return settings
