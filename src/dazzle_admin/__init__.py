"""
Dazzle Admin - auto-generated administrative CRUD for relational data.

This package provides:
- Resource specs: administrable resources and their field kinds
- Runtime: request parsing, field formatting, validation and dispatch
  against a data store, plus the FastAPI surface
- CLI: serve, inspect and initialize an admin database
"""

from dazzle_admin._version import get_version as _get_version

__version__ = _get_version()

from dazzle_admin.specs import (
    FileFieldSpec,
    ListOptions,
    RelationFieldSpec,
    ResourceSpec,
    ScalarFieldSpec,
    ScalarType,
)

__all__ = [
    "FileFieldSpec",
    "ListOptions",
    "RelationFieldSpec",
    "ResourceSpec",
    "ScalarFieldSpec",
    "ScalarType",
]
