########################################################
# APISHIELD - API Security Scanner                     #
# Licensed under AGPL-V3.0                             #
# Author: Perry Mertens pamsniffer@gmail.com (C) 2025  #
########################################################
from __future__ import annotations
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple
import json
import logging

import yaml

from canonical_model import (
    SOURCE_OPENAPI3,
    SOURCE_SWAGGER2,
    CanonicalSpec,
    Operation,
    ResponseSpec,
    SchemaNode,
)

__all__ = [
    "SpecLoadError",
    "HTTP_METHODS",
    "SWAGGER2_NON_OPERATION_KEYS",
    "parse_document_text",
    "load_spec",
    "is_spec_document",
    "is_swagger2",
    "normalize_swagger2",
    "requirement_names",
    "iter_operations",
    "schema_to_node",
    "adapt_openapi",
]

logger = logging.getLogger("openapi_universal")

HTTP_METHODS = {"get", "put", "post", "delete", "patch", "head", "options", "trace"}
SWAGGER2_NON_OPERATION_KEYS = {"parameters", "$ref", "summary", "description", "consumes", "produces"}
MAX_SCHEMA_DEPTH = 32


class SpecLoadError(ValueError):
    pass


#================funtion _coerce_list coerce value to list ##########
def _coerce_list(x: Any) -> List[Any]:
    if x is None:
        return []
    if isinstance(x, list):
        return x
    return [x]


#================funtion _iter_path_items iterate path items from spec ##########
def _iter_path_items(spec: Dict[str, Any]) -> Iterable[Tuple[str, Dict[str, Any]]]:
    paths = spec.get("paths") or {}
    if not isinstance(paths, dict):
        logger.debug("Ignoring non-mapping 'paths' section (%s)", type(paths).__name__)
        return
    for p, item in paths.items():
        if not isinstance(item, dict):
            continue
        yield str(p), item


#================funtion parse_document_text parse JSON or YAML text ##########
def parse_document_text(text: str, fmt: Optional[str] = None) -> Any:
    """Parse *text* as ``json``, ``yaml``, or (fmt=None) JSON first then YAML."""
    try:
        return _parse_text(text, fmt)
    except RecursionError as e:
        raise SpecLoadError("Document nesting too deep to parse") from e


#================funtion _parse_text ##########
def _parse_text(text: str, fmt: Optional[str]) -> Any:
    if fmt == "json":
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise SpecLoadError(f"Invalid JSON document: {e}") from e
    if fmt == "yaml":
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise SpecLoadError(f"Invalid YAML document: {e}") from e
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise SpecLoadError(f"Spec parse failed (not JSON/YAML): {e}") from e


#================funtion _format_from_suffix pick parser from file extension ##########
def _format_from_suffix(path: Path) -> Optional[str]:
    suffix = path.suffix.lower()
    if suffix in (".json", ".har"):
        return "json"
    if suffix in (".yaml", ".yml"):
        return "yaml"
    return None


#================funtion load_spec load JSON/YAML document from path or dict ##########
def load_spec(source) -> Dict[str, Any]:
    if isinstance(source, dict):
        return deepcopy(source)

    path = Path(str(source))
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    if not path.is_file():
        raise SpecLoadError(f"Path is not a file: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SpecLoadError(f"Cannot read {path}: {e}") from e
    if not text.strip():
        raise SpecLoadError(f"Input file is empty: {path}")

    doc = parse_document_text(text, _format_from_suffix(path))
    if not isinstance(doc, dict):
        raise SpecLoadError("Document content must be a JSON/YAML object.")
    logger.debug("Loaded %s (%d top-level keys)", path, len(doc))
    return doc


#================funtion is_spec_document accept anything carrying openapi/swagger ##########
def is_spec_document(doc: Any) -> bool:
    return isinstance(doc, dict) and ("openapi" in doc or "swagger" in doc)


#================funtion is_swagger2 ##########
def is_swagger2(doc: Any) -> bool:
    return isinstance(doc, dict) and str(doc.get("swagger") or "").startswith("2.")


#================funtion normalize_swagger2 convert Swagger 2 to OpenAPI-like layout ##########
def normalize_swagger2(spec: Dict[str, Any]) -> Dict[str, Any]:
    """Return an OpenAPI-like copy of a Swagger 2 document.

    Operations without their own ``security`` receive a copy of the global list
    here, so the converted document no longer depends on the global block.
    """
    global_security = spec.get("security") or []
    normalized: Dict[str, Any] = {
        "openapi": "3.0.0",
        "info": spec.get("info") or {},
        "paths": {},
        "security": deepcopy(global_security),
        "_isSwagger2": True,
    }
    for key in ("definitions", "responses", "parameters"):
        if key in spec:
            normalized[key] = spec[key]

    for path, item in _iter_path_items(spec):
        out_item: Dict[str, Any] = {}
        for method, op in item.items():
            if method in SWAGGER2_NON_OPERATION_KEYS:
                continue
            raw = dict(op) if isinstance(op, dict) else {}
            if "security" not in raw:
                raw["security"] = deepcopy(global_security)
            out_item[str(method).lower()] = raw
        normalized["paths"][path] = out_item

    defs = spec.get("securityDefinitions")
    if isinstance(defs, dict) and defs:
        normalized["_securityDefinitions"] = defs
    return normalized


#================funtion requirement_names flatten security requirement objects ##########
def requirement_names(security: Any) -> Optional[List[str]]:
    if security is None:
        return None
    names: List[str] = []
    for req in _coerce_list(security):
        if isinstance(req, dict):
            # {} is an explicit "no credentials needed" alternative
            names.append("+".join(str(k) for k in req) if req else "anonymous")
        elif req:
            names.append(str(req))
    return names


#================funtion iter_operations yield normalized operations from spec ##########
def iter_operations(spec: Dict[str, Any], all_keys: bool = False) -> Iterable[Dict[str, Any]]:
    for path, item in _iter_path_items(spec or {}):
        for verb, op in item.items():
            m = str(verb).lower()
            if not all_keys and m not in HTTP_METHODS:
                continue
            raw = op if isinstance(op, dict) else {}
            yield {
                "method": m,
                "path": path,
                "security": raw.get("security", None),
                "has_security": "security" in raw,
                "responses": raw.get("responses") or {},
                "raw": raw,
            }


class _SchemaConverter:
    """Turns JSON-schema fragments into SchemaNode trees, resolving local $refs."""

    def __init__(self, document: Dict[str, Any]):
        self.document = document or {}

    # ----------------------- Funtion resolve ----------------------------#
    def resolve(self, ref: str) -> Any:
        if not ref.startswith("#/"):
            logger.debug("External $ref not followed: %s", ref)
            return None
        node: Any = self.document
        for part in ref[2:].split("/"):
            part = part.replace("~1", "/").replace("~0", "~")
            if not isinstance(node, dict) or part not in node:
                logger.debug("Unresolvable $ref: %s", ref)
                return None
            node = node[part]
        return node

    # ----------------------- Funtion deref ----------------------------#
    def deref(self, obj: Any, stack: Tuple[str, ...] = ()) -> Tuple[Any, Tuple[str, ...]]:
        while isinstance(obj, dict) and isinstance(obj.get("$ref"), str):
            ref = obj["$ref"]
            if ref in stack or len(stack) > MAX_SCHEMA_DEPTH:
                return None, stack
            stack = stack + (ref,)
            obj = self.resolve(ref)
        return obj, stack

    # ----------------------- Funtion convert ----------------------------#
    def convert(self, schema: Any, depth: int = 0, stack: Tuple[str, ...] = ()) -> SchemaNode:
        if depth > MAX_SCHEMA_DEPTH or not isinstance(schema, dict):
            return SchemaNode.scalar()

        ref = schema.get("$ref")
        if isinstance(ref, str):
            if ref in stack:
                return SchemaNode.obj()
            target = self.resolve(ref)
            if target is None:
                return SchemaNode.scalar()
            return self.convert(target, depth + 1, stack + (ref,))

        properties: Dict[str, SchemaNode] = {}
        composed_object = False
        composed_array: Optional[SchemaNode] = None
        for key in ("allOf", "oneOf", "anyOf"):
            for sub in _coerce_list(schema.get(key)):
                node = self.convert(sub, depth + 1, stack)
                if node.is_object:
                    composed_object = True
                    properties.update(node.properties)
                elif node.is_array and composed_array is None:
                    composed_array = node

        own = schema.get("properties")
        if isinstance(own, dict):
            for name, sub in own.items():
                properties[str(name)] = self.convert(sub, depth + 1, stack)

        types = _coerce_list(schema.get("type"))
        if isinstance(own, dict) or "object" in types or composed_object:
            return SchemaNode.obj(properties)
        if "array" in types or "items" in schema:
            items = schema.get("items")
            if isinstance(items, dict) and items:
                return SchemaNode.array(self.convert(items, depth + 1, stack))
            return SchemaNode.array(None)
        if composed_array is not None:
            return composed_array
        return SchemaNode.scalar()

    # ----------------------- Funtion response_schema ----------------------------#
    def response_schema(self, response: Any) -> Optional[SchemaNode]:
        response, stack = self.deref(response)
        if not isinstance(response, dict):
            return None

        content = response.get("content")
        if isinstance(content, dict) and content:
            media = content.get("application/json")
            if not isinstance(media, dict):
                media = next((m for ct, m in content.items() if "json" in str(ct).lower() and isinstance(m, dict)), None)
            if not isinstance(media, dict):
                media = next((m for m in content.values() if isinstance(m, dict) and m.get("schema")), None)
            if isinstance(media, dict) and media.get("schema"):
                return self.convert(media["schema"], 0, stack)
            return None

        if response.get("schema"):
            return self.convert(response["schema"], 0, stack)
        return None


#================funtion schema_to_node convert one schema fragment ##########
def schema_to_node(schema: Any, document: Optional[Dict[str, Any]] = None) -> SchemaNode:
    return _SchemaConverter(document or {}).convert(schema)


#================funtion adapt_openapi OpenAPI 3 / Swagger 2 -> CanonicalSpec ##########
def adapt_openapi(document: Any) -> CanonicalSpec:
    doc = document if isinstance(document, dict) else {}
    converter = _SchemaConverter(doc)

    if is_swagger2(doc):
        logger.info("Detected Swagger 2.0 - converting to OpenAPI-like structure")
        working = normalize_swagger2(doc)
        kind = SOURCE_SWAGGER2
        meta_key, meta = "securityDefinitions", working.get("_securityDefinitions")
        all_keys = True
    else:
        working = doc
        kind = SOURCE_OPENAPI3
        meta_key, meta = "securitySchemes", ((doc.get("components") or {}) if isinstance(doc.get("components"), dict) else {}).get("securitySchemes")
        all_keys = False

    spec = CanonicalSpec(
        source_kind=kind,
        global_security=requirement_names(working.get("security")) or [],
        regulatory_meta={meta_key: meta} if isinstance(meta, dict) and meta else None,
    )

    for entry in iter_operations(working, all_keys=all_keys):
        responses: Dict[str, ResponseSpec] = {}
        raw_responses = entry["responses"]
        if isinstance(raw_responses, dict):
            for status, res in raw_responses.items():
                responses[str(status)] = ResponseSpec(schema=converter.response_schema(res))
        else:
            logger.debug("Skipping non-mapping responses for %s %s", entry["method"].upper(), entry["path"])

        security = requirement_names(entry["security"]) if entry["has_security"] else None
        if entry["has_security"] and security is None:
            security = []
        spec.add_operation(entry["path"], entry["method"], Operation(security=security, responses=responses))

    logger.debug("OpenAPI adapter produced %d operations (%s)", spec.operation_count(), kind)
    return spec
