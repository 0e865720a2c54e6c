from __future__ import annotations

import pytest

from blogger_mcp.errors import (
    INTERNAL_ERROR,
    REMOTE_ERROR,
    VALIDATION_ERROR,
    BloggerMcpError,
    Outcome,
    error_payload,
    normalize_error,
)
from blogger_mcp.validation import (
    check_input_schema,
    match_uri_template,
    validate_input,
    validate_uri_or_template,
)


def test_check_input_schema_requires_object_schema() -> None:
    assert check_input_schema({"type": "object"}) == {"type": "object"}
    assert check_input_schema({"properties": {}}) == {"properties": {}}

    for bad in ({"type": "array"}, ["not", "a", "mapping"], "string"):
        with pytest.raises(BloggerMcpError) as excinfo:
            check_input_schema(bad)
        assert excinfo.value.code == VALIDATION_ERROR


def test_validate_input_treats_none_as_empty_object() -> None:
    assert validate_input({"type": "object"}, None) == {}


def test_validate_input_rejects_non_object_payload() -> None:
    with pytest.raises(BloggerMcpError) as excinfo:
        validate_input({"type": "object"}, ["x"])

    assert excinfo.value.details == {"fields": ["$"]}


def test_validate_input_reports_nested_locations() -> None:
    schema = {
        "type": "object",
        "properties": {
            "posts": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {"title": {"type": "string"}},
                    "required": ["title"],
                },
            }
        },
    }

    with pytest.raises(BloggerMcpError) as excinfo:
        validate_input(schema, {"posts": [{"title": "ok"}, {}, {"title": 3}]})

    assert excinfo.value.details["fields"] == ["posts.1.title", "posts.2.title"]


def test_uri_templates_match_single_segments() -> None:
    assert match_uri_template("blogger://posts/{post_id}", "blogger://posts/abc") == {"post_id": "abc"}
    assert match_uri_template("blogger://posts/{post_id}", "blogger://posts/a/b") is None
    assert match_uri_template("blogger://blog", "blogger://blog") == {}
    assert match_uri_template("blogger://blog", "blogger://blog2") is None
    assert match_uri_template("a+b://x/{id}", "a+b://x/1") == {"id": "1"}


def test_plain_uris_need_a_scheme() -> None:
    assert validate_uri_or_template("https://example.com/feed") == "https://example.com/feed"
    with pytest.raises(BloggerMcpError):
        validate_uri_or_template("/relative/path")
    with pytest.raises(BloggerMcpError):
        validate_uri_or_template("")


def test_normalize_error_passes_structured_errors_through() -> None:
    original = BloggerMcpError(REMOTE_ERROR, "quota exceeded", details={"status": 403})

    assert normalize_error(original) is original
    assert original.to_dict() == {"code": REMOTE_ERROR, "message": "quota exceeded", "details": {"status": 403}}


def test_normalize_error_wraps_plain_exceptions() -> None:
    wrapped = normalize_error(KeyError("post_id"))
    generic = normalize_error(ValueError())

    assert wrapped.code == INTERNAL_ERROR
    assert "post_id" in wrapped.message
    assert wrapped.details == {"exception": "KeyError"}
    assert generic.message == "Unexpected internal error"


def test_outcome_and_payload_helpers() -> None:
    assert Outcome.success(5).unwrap() == 5
    assert Outcome.success().ok
    failure: Outcome[int] = Outcome.failure(BloggerMcpError(INTERNAL_ERROR, "nope"))
    assert not failure.ok
    with pytest.raises(BloggerMcpError):
        failure.unwrap()
    assert error_payload("X", "y") == {"code": "X", "message": "y"}
