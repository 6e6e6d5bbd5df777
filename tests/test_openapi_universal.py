import json

import pytest

from canonical_model import SOURCE_OPENAPI3, SOURCE_SWAGGER2
from openapi_universal import (
    SWAGGER2_NON_OPERATION_KEYS,
    SpecLoadError,
    adapt_openapi,
    is_spec_document,
    load_spec,
    normalize_swagger2,
    parse_document_text,
    requirement_names,
    schema_to_node,
)


def _swagger2_doc():
    return {
        "swagger": "2.0",
        "info": {"title": "Pets", "version": "1"},
        "security": [{"api_key": []}],
        "securityDefinitions": {"api_key": {"type": "apiKey", "in": "header", "name": "X-API-Key"}},
        "definitions": {
            "Pet": {
                "type": "object",
                "properties": {"id": {"type": "integer"}, "owner_email": {"type": "string"}},
            }
        },
        "paths": {
            "/pets": {
                "parameters": [{"name": "limit", "in": "query"}],
                "summary": "Pets",
                "description": "All pets",
                "get": {"responses": {"200": {"schema": {"type": "array", "items": {"$ref": "#/definitions/Pet"}}}}},
                "post": {"security": [], "responses": {"201": {"description": "created"}}},
            },
            "/pets/{id}": {
                "$ref": "#/x",
                "consumes": ["application/json"],
                "produces": ["application/json"],
                "DELETE": {"responses": {}},
            },
        },
    }


class TestSwagger2Conversion:
    def test_operation_pairs_exclude_non_operation_keys(self):
        doc = _swagger2_doc()
        spec = adapt_openapi(doc)

        expected = set()
        for path, item in doc["paths"].items():
            for key in item:
                if key not in SWAGGER2_NON_OPERATION_KEYS:
                    expected.add((path, key.lower()))
        actual = {(p, m) for p, methods in spec.paths.items() for m in methods}
        assert actual == expected
        assert spec.source_kind == SOURCE_SWAGGER2

    def test_missing_security_inherits_global_at_conversion(self):
        spec = adapt_openapi(_swagger2_doc())
        assert spec.paths["/pets"]["get"].security == ["api_key"]
        assert spec.paths["/pets"]["post"].security == []
        assert spec.paths["/pets/{id}"]["delete"].security == ["api_key"]

    def test_conversion_is_a_value_copy(self):
        doc = _swagger2_doc()
        normalized = normalize_swagger2(doc)
        doc["security"].append({"oauth": []})
        assert normalized["paths"]["/pets"]["get"]["security"] == [{"api_key": []}]

    def test_security_definitions_kept_as_metadata(self):
        spec = adapt_openapi(_swagger2_doc())
        assert "api_key" in spec.regulatory_meta["securityDefinitions"]

    def test_definitions_refs_are_resolved(self):
        spec = adapt_openapi(_swagger2_doc())
        schema = spec.paths["/pets"]["get"].responses["200"].schema
        assert schema.is_array
        assert set(schema.items.properties) == {"id", "owner_email"}
        assert spec.paths["/pets"]["post"].responses["201"].schema is None


class TestOpenAPI3:
    def test_security_absent_versus_empty_is_preserved(self):
        doc = {
            "openapi": "3.0.3",
            "security": [{"bearerAuth": []}],
            "paths": {
                "/a": {"get": {"responses": {}}},
                "/b": {"get": {"security": [], "responses": {}}},
                "/c": {"get": {"security": [{"k1": [], "k2": []}, {}], "responses": {}}},
            },
        }
        spec = adapt_openapi(doc)
        assert spec.source_kind == SOURCE_OPENAPI3
        assert spec.global_security == ["bearerAuth"]
        assert spec.paths["/a"]["get"].security is None
        assert spec.paths["/b"]["get"].security == []
        assert spec.paths["/c"]["get"].security == ["k1+k2", "anonymous"]
        assert spec.effective_security(spec.paths["/a"]["get"]) == ["bearerAuth"]

    def test_non_method_path_keys_are_ignored(self):
        doc = {
            "openapi": "3.0.0",
            "paths": {"/a": {"summary": "x", "parameters": [], "servers": [], "get": {"responses": {}}}},
        }
        spec = adapt_openapi(doc)
        assert list(spec.paths["/a"]) == ["get"]

    def test_response_schema_from_json_content_and_refs(self):
        doc = {
            "openapi": "3.0.0",
            "components": {
                "schemas": {
                    "User": {
                        "allOf": [
                            {"$ref": "#/components/schemas/Base"},
                            {"type": "object", "properties": {"password": {"type": "string"}}},
                        ]
                    },
                    "Base": {"type": "object", "properties": {"id": {"type": "integer"}}},
                },
                "responses": {
                    "UserResp": {"content": {"application/json": {"schema": {"$ref": "#/components/schemas/User"}}}}
                },
                "securitySchemes": {"bearerAuth": {"type": "http", "scheme": "bearer"}},
            },
            "paths": {
                "/users/{id}": {
                    "get": {
                        "responses": {
                            "200": {"$ref": "#/components/responses/UserResp"},
                            "404": {"description": "missing"},
                        }
                    }
                },
                "/v": {
                    "get": {
                        "responses": {
                            "200": {"content": {"application/vnd.api+json": {"schema": {"type": "object", "properties": {"x": {}}}}}}
                        }
                    }
                },
            },
        }
        spec = adapt_openapi(doc)
        user = spec.paths["/users/{id}"]["get"].responses["200"].schema
        assert user.is_object
        assert set(user.properties) == {"id", "password"}
        assert spec.paths["/users/{id}"]["get"].responses["404"].schema is None
        assert set(spec.paths["/v"]["get"].responses["200"].schema.properties) == {"x"}
        assert "bearerAuth" in spec.regulatory_meta["securitySchemes"]

    def test_self_referential_schema_terminates(self):
        doc = {
            "openapi": "3.0.0",
            "components": {
                "schemas": {
                    "Node": {
                        "type": "object",
                        "properties": {"name": {"type": "string"}, "child": {"$ref": "#/components/schemas/Node"}},
                    }
                }
            },
        }
        node = schema_to_node({"$ref": "#/components/schemas/Node"}, doc)
        assert node.is_object
        child = node.properties["child"]
        assert child.is_object
        assert child.properties == {}

    def test_incomplete_documents_do_not_raise(self):
        assert adapt_openapi({}).paths == {}
        assert adapt_openapi({"openapi": "3.0.0", "paths": None}).paths == {}
        assert adapt_openapi({"openapi": "3.0.0", "paths": {"/a": "oops"}}).paths == {}
        assert adapt_openapi(None).paths == {}
        spec = adapt_openapi({"openapi": "3.0.0", "paths": {"/a": {"get": {"responses": ["bad"]}}}})
        assert spec.paths["/a"]["get"].responses == {}


def test_requirement_names():
    assert requirement_names(None) is None
    assert requirement_names([]) == []
    assert requirement_names([{"a": []}, "legacy"]) == ["a", "legacy"]


def test_is_spec_document():
    assert is_spec_document({"openapi": "3.1.0"})
    assert is_spec_document({"swagger": "2.0"})
    assert not is_spec_document({"info": {}})
    assert not is_spec_document("openapi: 3.0.0")


class TestLoading:
    def test_load_json_and_yaml(self, tmp_path):
        j = tmp_path / "spec.json"
        j.write_text(json.dumps({"openapi": "3.0.0", "paths": {}}), encoding="utf-8")
        y = tmp_path / "spec.yaml"
        y.write_text("openapi: 3.0.0\npaths: {}\n", encoding="utf-8")
        assert load_spec(str(j))["openapi"] == "3.0.0"
        assert load_spec(str(y))["openapi"] == "3.0.0"

    def test_load_errors(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_spec(str(tmp_path / "missing.json"))

        empty = tmp_path / "empty.json"
        empty.write_text("   ", encoding="utf-8")
        with pytest.raises(SpecLoadError):
            load_spec(str(empty))

        broken = tmp_path / "broken.json"
        broken.write_text("{not json", encoding="utf-8")
        with pytest.raises(SpecLoadError):
            load_spec(str(broken))

        scalar = tmp_path / "scalar.yaml"
        scalar.write_text("- just\n- a list\n", encoding="utf-8")
        with pytest.raises(SpecLoadError):
            load_spec(str(scalar))

    def test_unreadable_bytes_raise_spec_load_error(self, tmp_path):
        binary = tmp_path / "spec.json"
        binary.write_bytes(b"\xff\xfe{}")
        with pytest.raises(SpecLoadError):
            load_spec(str(binary))

    def test_dict_source_is_copied(self):
        src = {"openapi": "3.0.0", "paths": {"/a": {}}}
        loaded = load_spec(src)
        loaded["paths"]["/b"] = {}
        assert "/b" not in src["paths"]

    def test_parse_text_json_first_then_yaml(self):
        assert parse_document_text('{"a": 1}') == {"a": 1}
        assert parse_document_text("a: 1\n") == {"a": 1}
        with pytest.raises(SpecLoadError):
            parse_document_text("a: [", "yaml")

    def test_excessive_nesting_is_a_load_error(self):
        deep = "[" * 200000 + "]" * 200000
        with pytest.raises(SpecLoadError):
            parse_document_text(deep, "json")
        with pytest.raises(SpecLoadError):
            parse_document_text(deep)
