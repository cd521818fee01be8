"""
Resource registry - the immutable set of administrable resources.

Built once at startup from a schema introspector plus per-resource
overrides, then passed explicitly to every pipeline component.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field

from dazzle_admin.runtime.introspection import SchemaIntrospector
from dazzle_admin.runtime.logging import get_admin_logger
from dazzle_admin.specs.resource import (
    FieldFormatterFn,
    FieldSpec,
    FieldValidatorFn,
    FileFieldSpec,
    ListOptions,
    RelationFieldSpec,
    ResourceSpec,
)

logger = get_admin_logger()


class FieldOverride(BaseModel):
    """
    Per-field options layered over introspected metadata.

    ``as_file`` turns a plain column into a file field holding the
    storage handle of an uploaded artifact.
    """

    label: str | None = None
    required: bool | None = None
    read_only: bool | None = None
    formatter: FieldFormatterFn | None = None
    validator: FieldValidatorFn | None = None
    as_file: bool = False
    max_size: int | None = None
    allowed_types: list[str] | None = None

    model_config = ConfigDict(frozen=True)


class ResourceOverride(BaseModel):
    """Per-resource options layered over introspected metadata."""

    label: str | None = None
    list_view: ListOptions | None = None
    fields: dict[str, FieldOverride] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


def _apply_field_override(field: FieldSpec, override: FieldOverride) -> FieldSpec:
    updates = {
        key: value
        for key, value in {
            "label": override.label,
            "required": override.required,
            "read_only": override.read_only,
            "formatter": override.formatter,
            "validator": override.validator,
        }.items()
        if value is not None
    }
    if override.as_file:
        file_kwargs = {
            "name": field.name,
            "label": field.label,
            "required": field.required,
            "read_only": field.read_only,
            "formatter": field.formatter,
            "validator": field.validator,
            **updates,
        }
        if override.max_size is not None:
            file_kwargs["max_size"] = override.max_size
        if override.allowed_types is not None:
            file_kwargs["allowed_types"] = override.allowed_types
        return FileFieldSpec(**file_kwargs)
    return field.model_copy(update=updates)


class ResourceRegistry:
    """
    Immutable, case-insensitive lookup of resources by name.

    Example:
        registry = ResourceRegistry.from_introspector(SQLiteIntrospector("app.db"))
        post = registry.get("post")  # matches resource "Post"
    """

    def __init__(self, resources: list[ResourceSpec]):
        by_key: dict[str, ResourceSpec] = {}
        for resource in resources:
            key = resource.name.lower()
            if key in by_key:
                raise ValueError(f"Duplicate resource name (case-insensitive): {resource.name}")
            by_key[key] = resource
        self._resources: Mapping[str, ResourceSpec] = MappingProxyType(by_key)
        self._check_relations()

    def _check_relations(self) -> None:
        for resource in self:
            for field in resource.fields:
                if isinstance(field, RelationFieldSpec) and self.get(field.target) is None:
                    logger.warning(
                        f"{resource.name}.{field.name} references unknown resource {field.target}"
                    )

    @classmethod
    def from_introspector(
        cls,
        introspector: SchemaIntrospector,
        overrides: Mapping[str, ResourceOverride] | None = None,
    ) -> ResourceRegistry:
        """
        Load resources once from an introspector and merge overrides.

        Args:
            introspector: Schema source
            overrides: Resource name -> options (labels, list view, field hooks)
        """
        overrides = overrides or {}
        introspected_resources = introspector.list_resources()
        unknown_resources = set(overrides) - {r.name for r in introspected_resources}
        if unknown_resources:
            raise ValueError(f"Overrides for unknown resources: {sorted(unknown_resources)}")

        resources: list[ResourceSpec] = []
        for introspected in introspected_resources:
            name = introspected.name
            fields = introspector.fields_of(name)
            override = overrides.get(name)
            updates: dict[str, object] = {"id_field": introspector.identifier_field_of(name)}
            if override is not None:
                unknown = set(override.fields) - {f.name for f in fields}
                if unknown:
                    raise ValueError(f"Overrides for unknown fields of {name}: {sorted(unknown)}")
                fields = [
                    _apply_field_override(f, override.fields[f.name])
                    if f.name in override.fields
                    else f
                    for f in fields
                ]
                if override.label is not None:
                    updates["label"] = override.label
                if override.list_view is not None:
                    updates["list_view"] = override.list_view
            updates["fields"] = fields
            resources.append(introspected.model_copy(update=updates))

        registry = cls(resources)
        logger.info(f"Registered {len(registry)} resources: {', '.join(registry.names)}")
        return registry

    def get(self, name: str) -> ResourceSpec | None:
        """Get a resource by name (case-insensitive)."""
        return self._resources.get(name.lower())

    @property
    def names(self) -> list[str]:
        return [r.name for r in self._resources.values()]

    def __iter__(self) -> Iterator[ResourceSpec]:
        return iter(self._resources.values())

    def __len__(self) -> int:
        return len(self._resources)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._resources
