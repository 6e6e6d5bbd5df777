import base64
import json

from canonical_model import SOURCE_TRAFFIC
from har_adapter import AUTH_REQUIREMENT, adapt_har, infer_schema, looks_like_har
from rule_engine import MSG_MISSING_AUTH, MSG_SENSITIVE_DATA, scan


def _entry(url, method="GET", status=200, body=None, headers=None, mime="application/json", encoding=None):
    content = {"mimeType": mime}
    if body is not None:
        text = json.dumps(body)
        if encoding == "base64":
            text = base64.b64encode(text.encode("utf-8")).decode("ascii")
            content["encoding"] = "base64"
        content["text"] = text
    return {
        "request": {"method": method, "url": url, "headers": headers or []},
        "response": {"status": status, "content": content},
    }


def _har(*entries):
    return {"log": {"version": "1.2", "entries": list(entries)}}


def test_looks_like_har():
    assert looks_like_har(_har())
    assert not looks_like_har({"log": []})
    assert not looks_like_har({"openapi": "3.0.0"})


def test_infer_schema_shapes():
    node = infer_schema({"id": 1, "tags": ["a"], "owner": {"id": 2}, "empty": []})
    assert node.is_object
    assert node.properties["tags"].is_array
    assert node.properties["tags"].items.kind == "scalar"
    assert node.properties["owner"].is_object
    assert node.properties["empty"].items is None


def test_authorized_token_response_gives_sensitive_finding_only():
    har = _har(_entry(
        "https://api.example.com/v1/me?x=1",
        headers=[{"name": "Authorization", "value": "Bearer abc"}],
        body={"token": "abc"},
    ))
    spec = adapt_har(har)
    assert spec.source_kind == SOURCE_TRAFFIC
    assert spec.paths["/v1/me"]["get"].security == [AUTH_REQUIREMENT]

    findings = scan(spec)
    assert [f.message for f in findings] == [MSG_SENSITIVE_DATA]
    assert "token" in findings[0].detail


def test_unauthenticated_entry_and_api_key_header():
    har = _har(
        _entry("https://h/items", body={"id": 1}),
        _entry("https://h/orders", headers=[{"name": "X-Api-Key", "value": "k"}], body={"id": 1}),
    )
    spec = adapt_har(har)
    assert spec.paths["/items"]["get"].security == []
    assert spec.paths["/orders"]["get"].security == [AUTH_REQUIREMENT]
    assert [f.message for f in scan(spec)] == [MSG_MISSING_AUTH]


def test_non_json_and_base64_bodies():
    har = _har(
        _entry("https://h/page", body={"password": "x"}, mime="text/html"),
        _entry("https://h/data", body={"secret": "x"}, encoding="base64"),
    )
    spec = adapt_har(har)
    assert spec.paths["/page"]["get"].responses == {}
    assert "secret" in spec.paths["/data"]["get"].responses["200"].schema.properties


def test_repeated_observations_merge_responses():
    har = _har(
        _entry("https://h/items", status=200, body={"id": 1}),
        _entry("https://h/items", status=404, body={"error": "x"}),
    )
    op = adapt_har(har).paths["/items"]["get"]
    assert set(op.responses) == {"200", "404"}


def test_malformed_entries_are_skipped():
    har = _har(
        {"request": {"url": "https://h/a"}},
        {"response": {"status": 200}},
        _entry("ftp://h/file"),
        "junk",
        _entry("https://h/ok", method="POST", status=201, body={"id": 1}),
    )
    spec = adapt_har(har)
    assert list(spec.paths) == ["/ok"]
    assert list(spec.paths["/ok"]) == ["post"]
    assert adapt_har({"log": {"entries": None}}).paths == {}
    assert adapt_har(None).paths == {}
