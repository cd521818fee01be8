"""Tests for operation results, status messages and store error messages."""

import json

import pytest

from dazzle_admin.runtime.errors import (
    RecordNotFoundError,
    StoreConstraintError,
    StoreUnavailableError,
)
from dazzle_admin.runtime.messages import CREATED, StatusMessage
from dazzle_admin.runtime.responses import (
    STORE_UNAVAILABLE,
    Redirect,
    Rendered,
    ResponseBuilder,
    store_error_message,
)
from dazzle_admin.runtime.validator import ValidationResult, Violation


class TestStatusMessage:
    def test_compact_json(self):
        assert CREATED.to_json() == '{"type":"success","content":"Created successfully"}'

    def test_from_json(self):
        message = StatusMessage.from_json('{"type": "info", "content": "Heads up"}')
        assert message == StatusMessage(type="info", content="Heads up")

    @pytest.mark.parametrize("raw", ['{"type":"info"}', '{"type":"loud","content":"x"}', '"x"'])
    def test_malformed(self, raw):
        with pytest.raises(ValueError):
            StatusMessage.from_json(raw)


class TestResponseBuilder:
    def test_destination(self):
        builder = ResponseBuilder("/admin")
        assert builder.destination("post") == "/admin/post"
        assert builder.destination("post", 5) == "/admin/post/5"
        assert builder.destination("tag", "a/b") == "/admin/tag/a%2Fb"

    def test_destination_with_message(self):
        destination = ResponseBuilder("").destination("post", 1, CREATED)
        path, _, message = destination.partition("?message=")
        assert path == "/post/1"
        assert json.loads(message) == CREATED.to_dict()

    def test_redirect_location_is_encoded(self):
        redirect = ResponseBuilder("/admin").redirect("post", 4, CREATED)
        assert redirect.location == (
            "/admin/post/4?message="
            "%7B%22type%22%3A%22success%22%2C%22content%22%3A%22Created%20successfully%22%7D"
        )

    def test_redirect_without_message(self):
        assert Redirect("/admin/post").location == "/admin/post"


class TestRendered:
    def test_status(self):
        assert Rendered(props={}).http_status == 200
        assert Rendered(props={}, error="boom").http_status == 422
        assert Rendered(props={}, error="boom", status_code=503).http_status == 503

    def test_to_dict(self):
        result = Rendered(
            props={"view": "detail"},
            error="Validation failed",
            validation=ValidationResult((Violation("title", "This field is required"),)),
        )
        assert result.to_dict() == {
            "props": {"view": "detail"},
            "error": "Validation failed",
            "validation": [{"property": "title", "message": "This field is required"}],
        }


class TestStoreErrorMessage:
    def test_unique_with_field(self):
        exc = StoreConstraintError("UNIQUE failed", field="email", constraint_type="unique")
        assert store_error_message(exc) == "A record with this value already exists (email)"

    def test_not_found(self):
        assert store_error_message(RecordNotFoundError("Post", 5)) == "The record does not exist"

    def test_unavailable(self):
        assert store_error_message(StoreUnavailableError("disk I/O error")) == STORE_UNAVAILABLE

    def test_debug_shows_store_message(self):
        exc = StoreUnavailableError("disk I/O error")
        assert store_error_message(exc, debug=True) == "disk I/O error"
