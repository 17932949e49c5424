"""
Cache invalidation on content mutation.

A mutation on one content type can leave stale data in responses of other
types that populate it: types it relates to, and types that embed a
component (directly, nested, or through a dynamic zone) whose relations
point back at it. Those REST paths are purged by regex. GraphQL entries
are not tracked per type and are purged on every mutation.
"""

import re
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Set, TYPE_CHECKING

from shared.errors import InvalidInput, SchemaResolutionError
from shared.logging import get_logger
from ..caching.keys import escape_regexp
from ..storage.base import CacheProvider
from .registry import Schema, SchemaRegistry

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

GRAPHQL_PATTERN = re.compile(r"^POST:/graphql(:.*)?$")

MUTATION_ACTIONS = ("create", "update", "delete")


@dataclass(frozen=True)
class LifecycleEvent:
    """A committed create/update/delete on one content type."""

    uid: str
    action: str = "update"

    @classmethod
    def from_payload(cls, payload: Any) -> "LifecycleEvent":
        """Accept an event, a ``{"model": {"uid": ...}}`` mapping, or an
        object exposing ``model.uid``."""
        if isinstance(payload, cls):
            return payload

        if isinstance(payload, Mapping):
            model = payload.get("model")
            action = payload.get("action")
            uid = model.get("uid") if isinstance(model, Mapping) else getattr(model, "uid", None)
            uid = uid or payload.get("uid")
        else:
            model = getattr(payload, "model", None)
            action = getattr(payload, "action", None)
            uid = model.get("uid") if isinstance(model, Mapping) else getattr(model, "uid", None)

        if not isinstance(uid, str) or not uid:
            raise ValueError("Lifecycle event has no model uid")
        return cls(uid=uid, action=_normalize_action(action))


def _normalize_action(action: Optional[str]) -> str:
    if not action:
        return "update"
    lowered = action.lower()
    for name in MUTATION_ACTIONS:
        # Host hooks are named afterCreate, afterUpdate, afterDelete...
        if name in lowered:
            return name
    return lowered


def _attributes(schema: Optional[Schema]) -> Mapping[str, Mapping[str, Any]]:
    if not schema:
        return {}
    attributes = schema.get("attributes") or {}
    return attributes if isinstance(attributes, Mapping) else {}


def _relation_targets(schema: Optional[Schema]) -> Iterable[str]:
    for attribute in _attributes(schema).values():
        if attribute.get("type") == "relation" and attribute.get("target"):
            yield attribute["target"]


def _embedded_components(schema: Optional[Schema]) -> Iterable[str]:
    for attribute in _attributes(schema).values():
        kind = attribute.get("type")
        if kind == "component" and attribute.get("component"):
            yield attribute["component"]
        elif kind == "dynamiczone":
            yield from attribute.get("components") or ()


def key_purge_pattern(key: str) -> "re.Pattern[str]":
    """Pattern used by manual purge: ``key`` as a whole path segment."""
    if not isinstance(key, str) or not key.strip():
        raise InvalidInput("key must be a non-empty string")
    return re.compile(rf"(^|/)?{escape_regexp(key)}(/|\?|$)")


class CacheInvalidator:
    """Maps mutation events onto regex purges against the storage provider."""

    def __init__(
        self,
        provider: CacheProvider,
        registry: SchemaRegistry,
        *,
        rest_prefix: str = "/api",
        enabled: bool = True,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.provider = provider
        self.registry = registry
        self.rest_prefix = rest_prefix.rstrip("/")
        self.enabled = enabled
        self.metrics = metrics
        self.logger = get_logger("cache.invalidator")

    def api_path(self, uid: str) -> str:
        """REST path of a content type; raises SchemaResolutionError."""
        schema = self.registry.content_type(uid)
        if not schema or not schema.get("kind"):
            raise SchemaResolutionError(uid)

        info = schema.get("info") or {}
        name = info.get("singularName") if schema["kind"] == "singleType" else info.get("pluralName")
        if not name:
            raise SchemaResolutionError(uid, f"Content type {uid} has no API name")
        return f"{self.rest_prefix}/{name}"

    def pattern_for(self, uid: str) -> "re.Pattern[str]":
        return re.compile(rf"^.*:{escape_regexp(self.api_path(uid))}(/.*)?(\?.*)?$")

    def relation_closure(self, uid: str) -> List[str]:
        """Content types whose cached responses may embed data of ``uid``.

        Recomputed on every call; schemas can change at runtime.
        """
        content_types = self.registry.content_types()
        components = self.registry.components()

        closure: List[str] = [uid]
        seen: Set[str] = {uid}

        def add(member: str) -> None:
            if member not in seen:
                seen.add(member)
                closure.append(member)

        for target in _relation_targets(self.registry.content_type(uid)):
            add(target)

        related_components: Set[str] = {
            component_uid
            for component_uid, schema in components.items()
            if uid in set(_relation_targets(schema))
        }

        # Components nesting an already related component are related too.
        changed = True
        while changed:
            changed = False
            for component_uid, schema in components.items():
                if component_uid in related_components:
                    continue
                if related_components.intersection(_embedded_components(schema)):
                    related_components.add(component_uid)
                    changed = True

        for type_uid, schema in content_types.items():
            if related_components.intersection(_embedded_components(schema)):
                add(type_uid)

        return closure

    def _timer(self, kind: str):
        if self.metrics:
            return self.metrics.time_operation("cache_invalidation_duration_seconds", kind=kind)
        return nullcontext()

    def _count(self, kind: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("cache_invalidations_total", kind=kind)

    async def invalidate_content_type(self, uid: str) -> int:
        """Purge REST entries of ``uid`` and its relation closure.

        Never raises. An unresolvable ``uid`` purges nothing; unresolvable
        closure members are skipped.
        """
        with self._timer("rest"):
            try:
                patterns = [self.pattern_for(uid)]
            except SchemaResolutionError as exc:
                self.logger.info("Content type not found, nothing to invalidate", uid=uid, reason=exc.message)
                return 0

            try:
                closure = self.relation_closure(uid)
            except Exception as exc:
                self.logger.error("Failed to compute relation closure", uid=uid, error=str(exc))
                closure = [uid]

            paths = [self.api_path(uid)]
            for member in closure[1:]:
                try:
                    patterns.append(self.pattern_for(member))
                    paths.append(self.api_path(member))
                except SchemaResolutionError as exc:
                    self.logger.info("Skipping unresolvable related type", uid=uid, related=member,
                                     reason=exc.message)

            try:
                removed = await self.provider.clear_by_regexp(patterns)
            except Exception as exc:
                self.logger.error("Cache invalidation error", uid=uid, error=str(exc))
                return 0

            self._count("rest")
            self.logger.info("Invalidated cache", uid=uid, paths=paths, removed=removed)
            return removed

    async def invalidate_graphql(self) -> int:
        """Purge every GraphQL entry. Never raises."""
        with self._timer("graphql"):
            try:
                removed = await self.provider.clear_by_regexp([GRAPHQL_PATTERN])
            except Exception as exc:
                self.logger.error("GraphQL cache invalidation error", error=str(exc))
                return 0
            self._count("graphql")
            self.logger.info("Invalidated GraphQL cache", pattern=GRAPHQL_PATTERN.pattern, removed=removed)
            return removed

    async def purge_key(self, key: str) -> int:
        """Manual purge of every entry containing ``key`` as a path segment."""
        pattern = key_purge_pattern(key)
        removed = await self.provider.clear_by_regexp([pattern])
        self._count("manual")
        self.logger.info("Purged cache by key", purge_key=key, removed=removed)
        return removed

    async def purge_all(self) -> bool:
        ok = await self.provider.reset()
        self._count("reset")
        self.logger.info("Purged entire cache", success=ok)
        return ok

    async def handle_mutation(self, event: Any) -> None:
        """Ingress for host lifecycle hooks, called after each commit.

        Never raises: a failed invalidation must not fail the write that
        triggered it.
        """
        if not self.enabled:
            return

        try:
            lifecycle = LifecycleEvent.from_payload(event)
        except Exception as exc:
            self.logger.warning("Ignoring malformed lifecycle event", error=str(exc))
            return

        try:
            await self.invalidate_content_type(lifecycle.uid)
            await self.invalidate_graphql()
        except Exception as exc:
            self.logger.error("Cache invalidation error", uid=lifecycle.uid, action=lifecycle.action,
                              error=str(exc), exc_info=True)
