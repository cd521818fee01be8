"""
Props builder - assembles the data a list, detail or dashboard view renders.

Props are plain dictionaries; the HTTP layer serializes them as JSON.
Building list props reads from the store, detail props are built from a
record the caller already holds (or from an echoed form).
"""

from __future__ import annotations

import math
from typing import Any

from dazzle_admin.runtime.file_storage import StorageBackend
from dazzle_admin.runtime.query import ListQuery
from dazzle_admin.runtime.registry import ResourceRegistry
from dazzle_admin.runtime.store import DataStore, FindResult, RecordId
from dazzle_admin.specs.resource import (
    BaseFieldSpec,
    FileFieldSpec,
    RelationFieldSpec,
    ResourceSpec,
    ScalarFieldSpec,
)


def describe_field(spec: BaseFieldSpec) -> dict[str, Any]:
    """Field metadata exposed to views."""
    info: dict[str, Any] = {
        "name": spec.name,
        "label": spec.display_name,
        "kind": getattr(spec, "kind", "scalar"),
        "required": spec.required,
        "readOnly": spec.read_only,
    }
    if isinstance(spec, ScalarFieldSpec):
        info["scalarType"] = str(spec.scalar_type)
    elif isinstance(spec, RelationFieldSpec):
        info["target"] = spec.target
        info["many"] = spec.many
    elif isinstance(spec, FileFieldSpec):
        info["maxSize"] = spec.max_size
        info["allowedTypes"] = spec.allowed_types
    return info


class PropsBuilder:
    """Builds view props for the resources of a registry."""

    def __init__(
        self,
        registry: ResourceRegistry,
        store: DataStore,
        storage: StorageBackend | None = None,
    ):
        self.registry = registry
        self.store = store
        self.storage = storage

    def _resources(self) -> list[dict[str, str]]:
        return [{"name": r.name, "title": r.title, "slug": r.slug} for r in self.registry]

    def dashboard_props(self) -> dict[str, Any]:
        return {"view": "dashboard", "resources": self._resources()}

    async def list_props(
        self,
        resource: ResourceSpec,
        query: ListQuery,
        found: FindResult | None = None,
    ) -> dict[str, Any]:
        """
        Props of a list view.

        Args:
            resource: Listed resource
            query: Search, sort and pagination of the view
            found: Page already read by the dispatcher (read from the store otherwise)
        """
        if found is None:
            found = await self.store.find(resource, query)

        display = resource.list_view.display
        columns = [
            f for f in resource.column_fields if display is None or f.name in display
        ]
        if display is not None:
            columns.sort(key=lambda f: display.index(f.name))

        return {
            "view": "list",
            "resource": resource.name,
            "title": resource.title,
            "resources": self._resources(),
            "idField": resource.id_field,
            "columns": [{"name": f.name, "label": f.display_name} for f in columns],
            "data": found.records,
            "total": found.total,
            "page": query.page,
            "itemsPerPage": query.items_per_page,
            "pageCount": max(math.ceil(found.total / query.items_per_page), 1),
            "search": query.search,
            "sortColumn": query.sort_column,
            "sortDirection": query.sort_direction,
        }

    def detail_props(
        self,
        resource: ResourceSpec,
        data: dict[str, Any] | None = None,
        record_id: RecordId | None = None,
        from_form: bool = False,
    ) -> dict[str, Any]:
        """
        Props of a detail (edit or create) view.

        Args:
            resource: Displayed resource
            data: Stored record, or the echoed form after a failed submission
            record_id: Identifier of the record (None for a new one)
            from_form: ``data`` is an echoed form; file fields hold upload names
        """
        data = dict(data or {})
        if record_id is not None:
            data.setdefault(resource.id_field, record_id)

        return {
            "view": "detail",
            "resource": resource.name,
            "title": resource.title,
            "resources": self._resources(),
            "idField": resource.id_field,
            "id": record_id,
            "fields": [describe_field(f) for f in resource.fields],
            "data": data,
            "fileUrls": {} if from_form else self._file_urls(resource, data),
        }

    def _file_urls(self, resource: ResourceSpec, data: dict[str, Any]) -> dict[str, str]:
        if self.storage is None:
            return {}
        urls: dict[str, str] = {}
        for spec in resource.fields:
            key = data.get(spec.name)
            if isinstance(spec, FileFieldSpec) and isinstance(key, str) and key:
                urls[spec.name] = self.storage.get_url(key)
        return urls
