"""
Resource specification types.

This module exports all admin specification types.
"""

from dazzle_admin.specs.resource import (
    TEXT_SCALARS,
    BaseFieldSpec,
    FieldFormatterFn,
    FieldSpec,
    FieldValidatorFn,
    FileFieldSpec,
    ListOptions,
    RelationFieldSpec,
    ResourceSpec,
    ScalarFieldSpec,
    ScalarType,
)

__all__ = [
    "TEXT_SCALARS",
    "BaseFieldSpec",
    "FieldFormatterFn",
    "FieldSpec",
    "FieldValidatorFn",
    "FileFieldSpec",
    "ListOptions",
    "RelationFieldSpec",
    "ResourceSpec",
    "ScalarFieldSpec",
    "ScalarType",
]
