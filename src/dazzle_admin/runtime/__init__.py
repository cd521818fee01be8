"""
Admin runtime.

The request pipeline (parser, formatter, validator, dispatcher, response
builder), its data store and file storage, and the FastAPI app factory.
"""

from dazzle_admin.runtime.app_factory import create_app, create_app_factory, run_app
from dazzle_admin.runtime.config import AdminConfig
from dazzle_admin.runtime.introspection import SQLiteIntrospector, StaticIntrospector
from dazzle_admin.runtime.registry import FieldOverride, ResourceOverride, ResourceRegistry
from dazzle_admin.runtime.router import AdminRouter
from dazzle_admin.runtime.store import DataStore, SQLiteDataStore

__all__ = [
    "AdminConfig",
    "AdminRouter",
    "DataStore",
    "FieldOverride",
    "ResourceOverride",
    "ResourceRegistry",
    "SQLiteDataStore",
    "SQLiteIntrospector",
    "StaticIntrospector",
    "create_app",
    "create_app_factory",
    "run_app",
]
