"""Tests for the resource registry and schema introspection."""

from __future__ import annotations

import sqlite3

import pytest
from pydantic import ValidationError

from dazzle_admin.runtime.introspection import SQLiteIntrospector, StaticIntrospector
from dazzle_admin.runtime.registry import FieldOverride, ResourceOverride, ResourceRegistry
from dazzle_admin.specs.resource import (
    FileFieldSpec,
    ListOptions,
    RelationFieldSpec,
    ResourceSpec,
    ScalarFieldSpec,
    ScalarType,
)

SCHEMA = """
CREATE TABLE user (
    id INTEGER PRIMARY KEY,
    email TEXT NOT NULL,
    name TEXT
);
CREATE TABLE post (
    id INTEGER PRIMARY KEY,
    title VARCHAR(200) NOT NULL,
    published BOOLEAN NOT NULL DEFAULT 0,
    rating NUMERIC,
    created_at DATETIME,
    author_id INTEGER NOT NULL REFERENCES user(id)
);
CREATE TABLE tag (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL
);
CREATE TABLE post_tags (
    post_id INTEGER REFERENCES post(id),
    tag_id TEXT REFERENCES tag(id),
    PRIMARY KEY (post_id, tag_id)
);
CREATE TABLE audit_log (
    message TEXT
);
"""


@pytest.fixture
def schema_db(tmp_path):
    path = tmp_path / "schema.db"
    conn = sqlite3.connect(path)
    conn.executescript(SCHEMA)
    conn.close()
    return path


# ---------------------------------------------------------------------------
# ResourceRegistry
# ---------------------------------------------------------------------------


class TestResourceRegistry:
    def test_case_insensitive_lookup(self, registry):
        assert registry.get("post").name == "Post"
        assert registry.get("POST").name == "Post"
        assert "tag" in registry
        assert registry.get("Comment") is None

    def test_iteration_order(self, registry):
        assert registry.names == ["User", "Post", "Tag"]
        assert len(registry) == 3

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError, match="Duplicate"):
            ResourceRegistry(
                [
                    ResourceSpec(name="Post", fields=[ScalarFieldSpec(name="id")]),
                    ResourceSpec(name="post", fields=[ScalarFieldSpec(name="id")]),
                ]
            )

    def test_unknown_relation_target_tolerated(self):
        registry = ResourceRegistry(
            [
                ResourceSpec(
                    name="Comment",
                    fields=[
                        ScalarFieldSpec(name="id"),
                        RelationFieldSpec(name="post_id", target="Post"),
                    ],
                )
            ]
        )
        assert registry.get("Comment") is not None


class TestOverrides:
    def test_labels_and_list_view(self, blog_resources):
        registry = ResourceRegistry.from_introspector(
            StaticIntrospector(blog_resources),
            {
                "User": ResourceOverride(
                    label="Authors",
                    list_view=ListOptions(display=["email"]),
                    fields={"email": FieldOverride(label="E-mail")},
                )
            },
        )
        user = registry.get("User")
        assert user.title == "Authors"
        assert user.list_view.display == ["email"]
        assert user.get_field("email").display_name == "E-mail"
        assert user.get_field("email").required

    def test_as_file(self, blog_resources):
        registry = ResourceRegistry.from_introspector(
            StaticIntrospector(blog_resources),
            {
                "User": ResourceOverride(
                    fields={
                        "name": FieldOverride(as_file=True, max_size=10, allowed_types=["image/png"])
                    }
                )
            },
        )
        avatar = registry.get("User").get_field("name")
        assert isinstance(avatar, FileFieldSpec)
        assert avatar.max_size == 10
        assert avatar.allowed_types == ["image/png"]
        assert avatar.label == "Full name"

    def test_unknown_resource_override(self, blog_resources):
        with pytest.raises(ValueError, match="unknown resources"):
            ResourceRegistry.from_introspector(
                StaticIntrospector(blog_resources), {"Comment": ResourceOverride()}
            )

    def test_unknown_field_override(self, blog_resources):
        with pytest.raises(ValueError, match="unknown fields"):
            ResourceRegistry.from_introspector(
                StaticIntrospector(blog_resources),
                {"Post": ResourceOverride(fields={"nope": FieldOverride(label="x")})},
            )

    def test_specs_are_frozen(self, post):
        with pytest.raises(ValidationError):
            post.name = "Changed"


# ---------------------------------------------------------------------------
# SQLiteIntrospector
# ---------------------------------------------------------------------------


class TestSQLiteIntrospector:
    def test_resources(self, schema_db):
        names = [r.name for r in SQLiteIntrospector(schema_db).list_resources()]
        # join tables and tables without a primary key are not resources
        assert names == ["post", "tag", "user"]

    def test_scalar_types(self, schema_db):
        fields = {f.name: f for f in SQLiteIntrospector(schema_db).fields_of("post")}
        assert fields["id"].scalar_type == ScalarType.INT
        assert fields["title"].scalar_type == ScalarType.STR
        assert fields["published"].scalar_type == ScalarType.BOOL
        assert fields["rating"].scalar_type == ScalarType.DECIMAL
        assert fields["created_at"].scalar_type == ScalarType.DATETIME

    def test_required_flags(self, schema_db):
        fields = {f.name: f for f in SQLiteIntrospector(schema_db).fields_of("post")}
        assert fields["title"].required
        assert not fields["published"].required  # has a default
        assert not fields["id"].required
        assert not fields["rating"].required

    def test_foreign_key_becomes_relation(self, schema_db):
        fields = {f.name: f for f in SQLiteIntrospector(schema_db).fields_of("post")}
        author = fields["author_id"]
        assert isinstance(author, RelationFieldSpec)
        assert author.target == "user"
        assert not author.many
        assert author.required

    def test_join_table_becomes_to_many(self, schema_db):
        introspector = SQLiteIntrospector(schema_db)
        tags = {f.name: f for f in introspector.fields_of("post")}["tags"]
        posts = {f.name: f for f in introspector.fields_of("tag")}["posts"]
        assert tags.many and tags.target == "tag"
        assert (tags.through, tags.source_column, tags.target_column) == (
            "post_tags",
            "post_id",
            "tag_id",
        )
        assert (posts.source_column, posts.target_column) == ("tag_id", "post_id")

    def test_identifier_field(self, schema_db):
        assert SQLiteIntrospector(schema_db).identifier_field_of("tag") == "id"

    def test_registry_from_database(self, schema_db):
        registry = ResourceRegistry.from_introspector(
            SQLiteIntrospector(schema_db),
            {"user": ResourceOverride(fields={"name": FieldOverride(label="Full name")})},
        )
        assert registry.get("Post").id_is_int
        assert not registry.get("Tag").id_is_int
        assert registry.get("user").get_field("name").display_name == "Full name"
