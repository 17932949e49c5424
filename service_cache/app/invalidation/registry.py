"""
Read-only view of the host's content-type and component schemas.

Schemas are plain mappings shaped like::

    {
        "kind": "collectionType",            # or "singleType"
        "info": {"singularName": "article", "pluralName": "articles"},
        "attributes": {
            "author": {"type": "relation", "target": "api::author.author"},
            "seo": {"type": "component", "component": "shared.seo"},
            "blocks": {"type": "dynamiczone", "components": ["blocks.hero"]},
        },
    }

Components carry only ``attributes``.
"""

from typing import Any, Dict, Mapping, Optional, Protocol


Schema = Mapping[str, Any]


class SchemaRegistry(Protocol):
    """What the invalidator needs from the host."""

    def content_type(self, uid: str) -> Optional[Schema]:
        ...

    def content_types(self) -> Mapping[str, Schema]:
        ...

    def components(self) -> Mapping[str, Schema]:
        ...


class StaticSchemaRegistry:
    """Registry backed by dictionaries the host keeps up to date."""

    def __init__(
        self,
        content_types: Optional[Mapping[str, Schema]] = None,
        components: Optional[Mapping[str, Schema]] = None,
    ):
        self._content_types: Dict[str, Schema] = dict(content_types or {})
        self._components: Dict[str, Schema] = dict(components or {})

    def register_content_type(self, uid: str, schema: Schema) -> None:
        self._content_types[uid] = schema

    def register_component(self, uid: str, schema: Schema) -> None:
        self._components[uid] = schema

    def unregister(self, uid: str) -> None:
        self._content_types.pop(uid, None)
        self._components.pop(uid, None)

    def content_type(self, uid: str) -> Optional[Schema]:
        return self._content_types.get(uid)

    def content_types(self) -> Mapping[str, Schema]:
        return dict(self._content_types)

    def components(self) -> Mapping[str, Schema]:
        return dict(self._components)
