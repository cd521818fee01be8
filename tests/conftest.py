"""Shared pytest fixtures for dazzle-admin tests."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from dazzle_admin.runtime.config import AdminConfig
from dazzle_admin.runtime.file_storage import LocalStorageBackend
from dazzle_admin.runtime.introspection import StaticIntrospector
from dazzle_admin.runtime.registry import ResourceRegistry
from dazzle_admin.runtime.router import AdminRouter
from dazzle_admin.runtime.store import SQLiteDataStore
from dazzle_admin.specs.resource import (
    FileFieldSpec,
    ListOptions,
    RelationFieldSpec,
    ResourceSpec,
    ScalarFieldSpec,
    ScalarType,
)


def make_blog_resources() -> list[ResourceSpec]:
    """User -< Post >-< Tag, with a cover image on posts."""
    return [
        ResourceSpec(
            name="User",
            fields=[
                ScalarFieldSpec(name="id", scalar_type=ScalarType.INT),
                ScalarFieldSpec(name="email", required=True),
                ScalarFieldSpec(name="name", label="Full name"),
            ],
        ),
        ResourceSpec(
            name="Post",
            label="Blog posts",
            fields=[
                ScalarFieldSpec(name="id", scalar_type=ScalarType.INT),
                ScalarFieldSpec(name="title", required=True),
                ScalarFieldSpec(name="body", scalar_type=ScalarType.TEXT),
                ScalarFieldSpec(name="published", scalar_type=ScalarType.BOOL),
                ScalarFieldSpec(name="views", scalar_type=ScalarType.INT),
                ScalarFieldSpec(name="rating", scalar_type=ScalarType.DECIMAL),
                ScalarFieldSpec(name="published_on", scalar_type=ScalarType.DATE),
                ScalarFieldSpec(name="metadata", scalar_type=ScalarType.JSON),
                RelationFieldSpec(name="author_id", target="User"),
                RelationFieldSpec(
                    name="tags",
                    target="Tag",
                    many=True,
                    through="post_tags",
                    source_column="post_id",
                    target_column="tag_id",
                ),
                FileFieldSpec(name="cover", max_size=1024, allowed_types=["image/*"]),
            ],
            list_view=ListOptions(display=["title", "published", "id"], search=["title", "body"]),
        ),
        ResourceSpec(
            name="Tag",
            fields=[
                ScalarFieldSpec(name="id"),
                ScalarFieldSpec(name="name", required=True),
            ],
        ),
    ]


@pytest.fixture
def blog_resources() -> list[ResourceSpec]:
    return make_blog_resources()


@pytest.fixture
def registry(blog_resources: list[ResourceSpec]) -> ResourceRegistry:
    return ResourceRegistry.from_introspector(StaticIntrospector(blog_resources))


@pytest.fixture
def post(registry: ResourceRegistry) -> ResourceSpec:
    resource = registry.get("Post")
    assert resource is not None
    return resource


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "admin.db"


@pytest.fixture
def store(db_path: Path, registry: ResourceRegistry) -> SQLiteDataStore:
    """SQLite store with the blog schema created."""
    data_store = SQLiteDataStore(db_path)
    data_store.create_tables(registry)
    return data_store


@pytest.fixture
def seeded_store(store: SQLiteDataStore, db_path: Path) -> SQLiteDataStore:
    """Store holding one user, three tags and three posts (ids 1-3)."""
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("INSERT INTO \"User\" (id, email, name) VALUES (1, 'ada@example.com', 'Ada')")
        conn.executemany(
            'INSERT INTO "Tag" (id, name) VALUES (?, ?)',
            [("t-news", "News"), ("t-tech", "Tech"), ("t-misc", "Misc")],
        )
        conn.executemany(
            'INSERT INTO "Post" (id, title, body, published, views, author_id) '
            "VALUES (?, ?, ?, ?, ?, ?)",
            [
                (1, "Hello world", "First post", 1, 10, 1),
                (2, "Second", "Nothing to see", 0, 5, 1),
                (3, "Python tips", "Hello again", 1, 42, None),
            ],
        )
        conn.execute("INSERT INTO post_tags (post_id, tag_id) VALUES (1, 't-news')")
        conn.commit()
    finally:
        conn.close()
    return store


@pytest.fixture
def storage(tmp_path: Path) -> LocalStorageBackend:
    return LocalStorageBackend(tmp_path / "uploads", "/files")


@pytest.fixture
def config(tmp_path: Path, db_path: Path) -> AdminConfig:
    return AdminConfig(
        environment="test",
        db_path=db_path,
        uploads_path=tmp_path / "uploads",
    )


@pytest.fixture
def router(
    registry: ResourceRegistry,
    seeded_store: SQLiteDataStore,
    config: AdminConfig,
    storage: LocalStorageBackend,
) -> AdminRouter:
    return AdminRouter(registry, seeded_store, config, storage)
