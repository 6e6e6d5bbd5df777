########################################################
# APISHIELD - API Security Scanner                     #
# Licensed under AGPL-V3.0                             #
# Author: Perry Mertens pamsniffer@gmail.com (C) 2025  #
########################################################
from __future__ import annotations
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse
import logging

from canonical_model import SOURCE_COLLECTION, CanonicalSpec, Operation

__all__ = ["AUTH_REQUIREMENT", "AUTH_HEADERS", "looks_like_collection", "request_path", "adapt_postman"]

logger = logging.getLogger("postman_adapter")

AUTH_REQUIREMENT = "postman-auth"
AUTH_HEADERS = {"authorization", "x-api-key"}
PLACEHOLDER_AUTHORITY = "http://localhost"


# ----------------------- Funtion looks_like_collection ----------------------------#
def looks_like_collection(doc: Any) -> bool:
    if not isinstance(doc, dict) or "openapi" in doc or "swagger" in doc:
        return False
    info = doc.get("info") if isinstance(doc.get("info"), dict) else {}
    return bool(info.get("_postman_id") or "getpostman" in str(info.get("schema") or "") or isinstance(doc.get("item"), list))


# ----------------------- Funtion _raw_url ----------------------------#
def _raw_url(url: Any) -> str:
    if isinstance(url, str):
        return url
    if isinstance(url, dict):
        raw = url.get("raw")
        if isinstance(raw, str) and raw:
            return raw
        # structured form without raw: rebuild from path segments
        segments = url.get("path")
        if isinstance(segments, list):
            return "/" + "/".join(str(s.get("value", "") if isinstance(s, dict) else s) for s in segments)
        if isinstance(segments, str):
            return segments
    return ""


# ----------------------- Funtion request_path ----------------------------#
def request_path(url: Any) -> str:
    """Path component of a collection request URL (raw string or ``{raw}`` object)."""
    raw = _raw_url(url).strip()
    if not raw:
        return "/"
    candidate = raw if raw.lower().startswith(("http://", "https://")) else PLACEHOLDER_AUTHORITY + ("" if raw.startswith("/") else "/") + raw
    try:
        path = urlparse(candidate).path
    except ValueError:
        path = raw.split("?", 1)[0]
        return path if path.startswith("/") else "/" + path
    return path or "/"


# ----------------------- Funtion _auth_block_present ----------------------------#
def _auth_block_present(auth: Any) -> Optional[bool]:
    """True/False when an auth block decides the question, None when absent."""
    if auth is None:
        return None
    if isinstance(auth, dict):
        return str(auth.get("type") or "").lower() != "noauth"
    return bool(auth)


# ----------------------- Funtion _has_auth_header ----------------------------#
def _has_auth_header(headers: Any) -> bool:
    if not isinstance(headers, list):
        return False
    for h in headers:
        if not isinstance(h, dict) or h.get("disabled"):
            continue
        if str(h.get("key") or "").strip().lower() in AUTH_HEADERS:
            return True
    return False


# ----------------------- Funtion adapt_postman ----------------------------#
def adapt_postman(collection: Any) -> CanonicalSpec:
    spec = CanonicalSpec(source_kind=SOURCE_COLLECTION)
    if not isinstance(collection, dict):
        return spec

    def _walk(items: List[Any], inherited_auth: bool) -> None:
        for item in items:
            if not isinstance(item, dict):
                continue
            if isinstance(item.get("item"), list):
                folder_auth = _auth_block_present(item.get("auth"))
                _walk(item["item"], inherited_auth if folder_auth is None else folder_auth)
                continue
            request = item.get("request")
            if request is None:
                continue
            if isinstance(request, str):
                request = {"url": request}
            if not isinstance(request, dict):
                continue

            method = str(request.get("method") or "GET").lower()
            path = request_path(request.get("url"))
            own_auth = _auth_block_present(request.get("auth"))
            has_auth = (inherited_auth if own_auth is None else own_auth) or _has_auth_header(request.get("header"))

            spec.add_operation(path, method, Operation(security=[AUTH_REQUIREMENT] if has_auth else [], responses={}))

    root_auth = _auth_block_present(collection.get("auth"))
    items = collection.get("item")
    if isinstance(items, list):
        _walk(items, bool(root_auth))
    logger.debug("Collection adapter produced %d operations", spec.operation_count())
    return spec
