"""Tests for request parsing into the typed admin request envelope."""

from __future__ import annotations

import json
from urllib.parse import urlencode

import pytest

from dazzle_admin.runtime.errors import InvalidRequestError
from dazzle_admin.runtime.file_storage import UploadedBlob
from dazzle_admin.runtime.query import ListQuery
from dazzle_admin.runtime.registry import ResourceRegistry
from dazzle_admin.runtime.request_parser import (
    AdminAction,
    FormAction,
    RawRequest,
    SubmittedForm,
    parse_request,
    split_path,
)


def _parse(registry: ResourceRegistry, method: str, path: str, **kwargs):
    return parse_request(RawRequest(method=method, path=path, **kwargs), "/admin", registry)


# ---------------------------------------------------------------------------
# Path segments
# ---------------------------------------------------------------------------


class TestSplitPath:
    def test_segments_after_base(self):
        assert split_path("/admin/Post/5", "/admin") == ["Post", "5"]

    def test_base_only(self):
        assert split_path("/admin", "/admin") == []
        assert split_path("/admin/", "/admin") == []

    def test_outside_base(self):
        assert split_path("/administrator/Post", "/admin") is None
        assert split_path("/other", "/admin") is None

    def test_percent_decoding(self):
        assert split_path("/admin/Tag/a%20b", "/admin") == ["Tag", "a b"]

    def test_empty_base(self):
        assert split_path("/Post/1", "") == ["Post", "1"]


class TestResourceMatching:
    def test_case_insensitive(self, registry):
        request = _parse(registry, "GET", "/admin/POST")
        assert request.resource is not None
        assert request.resource.name == "Post"

    def test_unknown_resource(self, registry):
        request = _parse(registry, "GET", "/admin/Unknown")
        assert request.resource is None
        assert request.resource_segment == "Unknown"

    def test_dashboard(self, registry):
        request = _parse(registry, "GET", "/admin")
        assert request.resource is None
        assert request.resource_segment is None

    def test_int_identifier(self, registry):
        request = _parse(registry, "GET", "/admin/post/5")
        assert request.record_id == 5
        assert not request.invalid_id

    def test_string_identifier(self, registry):
        request = _parse(registry, "GET", "/admin/tag/t-news")
        assert request.record_id == "t-news"

    def test_uncoercible_identifier(self, registry):
        request = _parse(registry, "GET", "/admin/post/abc")
        assert request.record_id is None
        assert request.invalid_id

    def test_extra_segments_are_invalid(self, registry):
        request = _parse(registry, "GET", "/admin/post/5/edit")
        assert request.invalid_id

    def test_new_marker(self, registry):
        request = _parse(registry, "GET", "/admin/post/new")
        assert request.is_new
        assert request.record_id is None
        assert not request.invalid_id


# ---------------------------------------------------------------------------
# Form control fields
# ---------------------------------------------------------------------------


class TestFormControls:
    def test_delete_action(self, registry):
        request = _parse(
            registry,
            "POST",
            "/admin/post/5",
            form_items=(("__admin_action", "delete"),),
        )
        assert request.form_action is FormAction.DELETE
        assert request.action is AdminAction.DELETE
        assert "__admin_action" not in request.form

    def test_other_action_is_save(self, registry):
        request = _parse(
            registry,
            "POST",
            "/admin/post/5",
            form_items=(("__admin_action", "whatever"), ("title", "x")),
        )
        assert request.form_action is FormAction.SAVE
        assert request.action is AdminAction.UPDATE

    def test_missing_action_defaults_to_save(self, registry):
        request = _parse(registry, "POST", "/admin/post", form_items=(("title", "x"),))
        assert request.form_action is FormAction.SAVE
        assert request.action is AdminAction.CREATE

    @pytest.mark.parametrize("value", ["true", "1", "on", "yes", "TRUE"])
    def test_redirect_truthy(self, registry, value):
        request = _parse(
            registry, "POST", "/admin/post/1", form_items=(("__admin_redirect", value),)
        )
        assert request.redirect is True

    @pytest.mark.parametrize("value", ["false", "0", "", "off"])
    def test_redirect_falsy(self, registry, value):
        request = _parse(
            registry, "POST", "/admin/post/1", form_items=(("__admin_redirect", value),)
        )
        assert request.redirect is False

    def test_identifier_never_read_from_form(self, registry):
        request = _parse(
            registry, "POST", "/admin/post", form_items=(("id", "99"), ("title", "Hello"))
        )
        assert "id" not in request.form
        assert request.record_id is None
        assert request.form.last("title") == "Hello"

    def test_file_removal_marker(self, registry):
        request = _parse(
            registry,
            "POST",
            "/admin/post/1",
            form_items=(("__admin_remove:cover", "cover/2024/01/01/abc_a.png"),),
        )
        assert request.removed_files == {"cover": "cover/2024/01/01/abc_a.png"}
        assert len(request.form) == 0
        assert request.has_domain_values

    def test_multi_valued_fields(self, registry):
        request = _parse(
            registry,
            "POST",
            "/admin/post/1",
            form_items=(("tags", "a"), ("tags", "b"), ("published", "false"), ("published", "on")),
        )
        assert request.form.all("tags") == ("a", "b")
        assert request.form.last("published") == "on"
        assert request.form.raw("tags") == ["a", "b"]

    def test_get_is_list(self, registry):
        assert _parse(registry, "GET", "/admin/post").action is AdminAction.LIST


class TestSubmittedForm:
    def test_to_dict_uses_upload_filenames(self):
        blob = UploadedBlob(filename="a.png", content_type="image/png", data=b"x")
        form = SubmittedForm.from_items([("title", "Hi"), ("cover", blob), ("tags", "1"), ("tags", "2")])
        assert form.to_dict() == {"title": "Hi", "cover": "a.png", "tags": ["1", "2"]}

    def test_raw_absent(self):
        assert SubmittedForm().raw("title") is None


# ---------------------------------------------------------------------------
# DELETE bodies
# ---------------------------------------------------------------------------


class TestDeleteBody:
    def test_ids_coerced(self, registry):
        request = _parse(registry, "DELETE", "/admin/post", body=b"[1, \"2\", 999]")
        assert request.ids == (1, 2, 999)
        assert request.action is AdminAction.DELETE_MANY

    def test_string_ids(self, registry):
        request = _parse(registry, "DELETE", "/admin/tag", body=json.dumps(["a", "b"]).encode())
        assert request.ids == ("a", "b")

    def test_empty_body(self, registry):
        assert _parse(registry, "DELETE", "/admin/post").ids == ()

    def test_not_an_array(self, registry):
        with pytest.raises(InvalidRequestError):
            _parse(registry, "DELETE", "/admin/post", body=b'{"ids": [1]}')

    def test_malformed_json(self, registry):
        with pytest.raises(InvalidRequestError):
            _parse(registry, "DELETE", "/admin/post", body=b"[1,")

    def test_uncoercible_id(self, registry):
        with pytest.raises(InvalidRequestError):
            _parse(registry, "DELETE", "/admin/post", body=b'["abc"]')

    @pytest.mark.parametrize("body", [b"[1.9]", b"[2.0]", b'["5.0"]', b"[true]", b"[[1]]"])
    def test_non_integer_ids_rejected(self, registry, body):
        with pytest.raises(InvalidRequestError):
            _parse(registry, "DELETE", "/admin/post", body=body)


# ---------------------------------------------------------------------------
# Query string
# ---------------------------------------------------------------------------


class TestQueryString:
    def test_list_query(self, registry):
        qs = "search=hello&sortColumn=title&sortDirection=desc&page=2&itemsPerPage=5"
        request = _parse(registry, "GET", "/admin/post", query_string=qs)
        assert request.query == ListQuery(
            search="hello", sort_column="title", sort_direction="desc", page=2, items_per_page=5
        )
        assert request.query.offset == 5

    def test_defaults(self, registry):
        request = _parse(registry, "GET", "/admin/post")
        assert request.query == ListQuery()
        assert request.query.items_per_page == 10

    def test_status_message(self, registry):
        qs = urlencode({"message": '{"type":"success","content":"Created successfully"}'})
        request = _parse(registry, "GET", "/admin/post/1", query_string=qs)
        assert request.message is not None
        assert request.message.type == "success"
        assert request.message.content == "Created successfully"

    @pytest.mark.parametrize(
        "raw", ["not json", '{"type":"success"}', '{"type":"bogus","content":"x"}', "[1]"]
    )
    def test_malformed_message_ignored(self, registry, raw):
        request = _parse(registry, "GET", "/admin/post", query_string=urlencode({"message": raw}))
        assert request.message is None


class TestListQuery:
    def test_clamps_items_per_page(self):
        query = ListQuery.from_params({"itemsPerPage": "1000"}, max_items_per_page=100)
        assert query.items_per_page == 100
        assert ListQuery.from_params({"itemsPerPage": "0"}).items_per_page == 1

    def test_page_at_least_one(self):
        assert ListQuery.from_params({"page": "-3"}).page == 1

    def test_malformed_numbers_fall_back(self):
        query = ListQuery.from_params({"page": "x", "itemsPerPage": "y"}, default_items_per_page=7)
        assert query.page == 1
        assert query.items_per_page == 7

    def test_unknown_direction_is_asc(self):
        assert ListQuery.from_params({"sortDirection": "sideways"}).sort_direction == "asc"

    def test_blank_search_is_none(self):
        assert ListQuery.from_params({"search": "   "}).search is None
