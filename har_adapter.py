########################################################
# APISHIELD - API Security Scanner                     #
# Licensed under AGPL-V3.0                             #
# Author: Perry Mertens pamsniffer@gmail.com (C) 2025  #
########################################################
"""HTTP archive (HAR) capture -> CanonicalSpec."""
from __future__ import annotations
from typing import Any, Dict, Optional
from urllib.parse import urlparse
import base64
import binascii
import json
import logging

from canonical_model import SOURCE_TRAFFIC, CanonicalSpec, Operation, ResponseSpec, SchemaNode

__all__ = ["AUTH_REQUIREMENT", "MAX_INFER_DEPTH", "looks_like_har", "infer_schema", "adapt_har"]

logger = logging.getLogger("har_adapter")

AUTH_REQUIREMENT = "har-auth"
AUTH_HEADERS = {"authorization", "x-api-key"}
MAX_INFER_DEPTH = 32


# ----------------------- Funtion looks_like_har ----------------------------#
def looks_like_har(doc: Any) -> bool:
    return isinstance(doc, dict) and isinstance(doc.get("log"), dict) and "entries" in doc["log"]


# ----------------------- Funtion infer_schema ----------------------------#
def infer_schema(value: Any, depth: int = 0) -> SchemaNode:
    """Structural schema of an observed JSON value; arrays use their first element."""
    if depth >= MAX_INFER_DEPTH:
        return SchemaNode.scalar()
    if isinstance(value, dict):
        return SchemaNode.obj({str(k): infer_schema(v, depth + 1) for k, v in value.items()})
    if isinstance(value, list):
        return SchemaNode.array(infer_schema(value[0], depth + 1) if value else None)
    return SchemaNode.scalar()


# ----------------------- Funtion _has_auth_header ----------------------------#
def _has_auth_header(headers: Any) -> bool:
    if not isinstance(headers, list):
        return False
    return any(
        isinstance(h, dict) and str(h.get("name") or "").strip().lower() in AUTH_HEADERS
        for h in headers
    )


# ----------------------- Funtion _json_body ----------------------------#
def _json_body(content: Any) -> Optional[Any]:
    if not isinstance(content, dict):
        return None
    if "json" not in str(content.get("mimeType") or "").lower():
        return None
    text = content.get("text")
    if not isinstance(text, str) or not text:
        return None
    if str(content.get("encoding") or "").lower() == "base64":
        try:
            text = base64.b64decode(text).decode("utf-8", "replace")
        except (binascii.Error, ValueError):
            return None
    try:
        return json.loads(text)
    except (json.JSONDecodeError, RecursionError):
        return None


# ----------------------- Funtion adapt_har ----------------------------#
def adapt_har(har: Any) -> CanonicalSpec:
    spec = CanonicalSpec(source_kind=SOURCE_TRAFFIC)
    log = har.get("log") if isinstance(har, dict) else None
    entries = log.get("entries") if isinstance(log, dict) else None
    if not isinstance(entries, list):
        return spec

    skipped = 0
    for entry in entries:
        request = entry.get("request") if isinstance(entry, dict) else None
        response = entry.get("response") if isinstance(entry, dict) else None
        if not isinstance(request, dict) or not isinstance(response, dict):
            skipped += 1
            continue
        url = str(request.get("url") or "")
        if not url.lower().startswith(("http://", "https://")):
            skipped += 1
            continue
        try:
            path = urlparse(url).path or "/"
        except ValueError:
            skipped += 1
            continue

        method = str(request.get("method") or "GET").lower()
        security = [AUTH_REQUIREMENT] if _has_auth_header(request.get("headers")) else []

        responses: Dict[str, ResponseSpec] = {}
        body = _json_body(response.get("content"))
        if body is not None:
            responses[str(response.get("status"))] = ResponseSpec(schema=infer_schema(body))

        existing = spec.paths.get(path, {}).get(method)
        if existing is not None:
            merged = dict(existing.responses)
            merged.update(responses)
            responses = merged
        spec.add_operation(path, method, Operation(security=security, responses=responses))

    logger.debug("HAR adapter produced %d operations (%d entries skipped)", spec.operation_count(), skipped)
    return spec
