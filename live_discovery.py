########################################################
# APISHIELD - API Security Scanner                     #
# Licensed under AGPL-V3.0                             #
# Author: Perry Mertens pamsniffer@gmail.com (C) 2025  #
########################################################
"""Live target discovery.

Given a URL, either load an OpenAPI/Swagger document from it (directly, or from
one of the conventional spec locations below the base URL) or fall back to
probing a fixed list of common endpoints. Requests are strictly sequential,
each bounded by a timeout and never retried; endpoint probes are followed by a
fixed delay. Network failures are logged and treated as "no information".
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse, urlunparse
import logging
import time

import requests
from requests.adapters import HTTPAdapter
from tqdm import tqdm

from canonical_model import SOURCE_LIVE_PROBE, CanonicalSpec, Operation, ResponseSpec, SchemaNode
from openapi_universal import SpecLoadError, adapt_openapi, is_spec_document, parse_document_text
from sensitive_fields import classify
from version import __version__

__all__ = [
    "SPEC_PATHS_TO_PROBE",
    "COMMON_ENDPOINT_PATHS",
    "DEFAULT_TIMEOUT",
    "DEFAULT_DELAY_MS",
    "USER_AGENT",
    "KIND_OPENAPI",
    "KIND_PROBED",
    "ProbeResult",
    "DiscoveryResult",
    "LiveDiscovery",
    "is_direct_spec_url",
    "build_session",
    "parse_spec_response",
    "extract_sensitive_fields",
    "adapt_probe_results",
    "adapt_discovery",
    "scan_live_url",
]

logger = logging.getLogger("live_discovery")

SPEC_PATHS_TO_PROBE = [
    "/openapi.json",
    "/openapi.yaml",
    "/swagger.json",
    "/swagger.yaml",
    "/api-docs",
    "/v2/api-docs",
    "/api/swagger.json",
    "/api/v3/openapi.json",
]

COMMON_ENDPOINT_PATHS = [
    "/api/users",
    "/api/user",
    "/users",
    "/user",
    "/api/admin",
    "/admin",
    "/api/profile",
    "/profile",
    "/api/me",
    "/me",
    "/health",
    "/status",
    "/.env",
    "/config.json",
]

DEFAULT_TIMEOUT = 5.0
DEFAULT_DELAY_MS = 800
USER_AGENT = f"APIShield/{__version__} (security scanner)"
PROBE_AUTH_REQUIREMENT = "probed-auth"
MAX_BODY_DEPTH = 32

KIND_OPENAPI = "openapi"
KIND_PROBED = "probed"

_DIRECT_SPEC_SUFFIXES = ("/openapi.json", "/openapi.yaml", "/swagger.json", "/swagger.yaml")
_DIRECT_SPEC_MARKERS = ("/openapi", "/swagger")


@dataclass
class ProbeResult:
    path: str
    status: int
    method: str = "GET"
    auth_detected: bool = False
    sensitive_fields: List[str] = field(default_factory=list)
    has_json_body: bool = False


@dataclass
class DiscoveryResult:
    kind: str
    source: str
    spec: Optional[Dict[str, Any]] = None
    probes: List[ProbeResult] = field(default_factory=list)
    reachable: bool = True


# ----------------------- Funtion _is_success ----------------------------#
def _is_success(resp: Optional[requests.Response]) -> bool:
    return resp is not None and 200 <= resp.status_code < 300


# ----------------------- Funtion normalize_url ----------------------------#
def normalize_url(url: str) -> str:
    url = str(url).strip()
    return url if url.lower().startswith(("http://", "https://")) else "http://" + url


# ----------------------- Funtion is_direct_spec_url ----------------------------#
def is_direct_spec_url(url: str) -> bool:
    path = urlparse(normalize_url(url)).path.lower()
    return path.endswith(_DIRECT_SPEC_SUFFIXES) or any(m in path for m in _DIRECT_SPEC_MARKERS)


# ----------------------- Funtion base_url_for ----------------------------#
def base_url_for(url: str) -> str:
    """Base URL for discovery: query dropped, and any spec segment cut off."""
    parsed = urlparse(normalize_url(url))
    path = parsed.path
    lower = path.lower()
    cut = min((lower.find(m) for m in _DIRECT_SPEC_MARKERS if m in lower), default=-1)
    if cut >= 0:
        path = path[:cut]
    return urlunparse((parsed.scheme, parsed.netloc, path.rstrip("/"), "", "", ""))


# ----------------------- Funtion join_url ----------------------------#
def join_url(base: str, path: str) -> str:
    return base.rstrip("/") + "/" + path.lstrip("/")


# ----------------------- Funtion build_session ----------------------------#
def build_session(user_agent: Optional[str] = None, verify: bool = True) -> requests.Session:
    sess = requests.Session()
    sess.headers.update({
        "User-Agent": user_agent or USER_AGENT,
        "Accept": "application/json, */*",
    })
    sess.verify = verify
    adapter = HTTPAdapter(max_retries=0)
    sess.mount("http://", adapter)
    sess.mount("https://", adapter)
    return sess


# ----------------------- Funtion parse_spec_response ----------------------------#
def parse_spec_response(resp: requests.Response, url: str) -> Optional[Dict[str, Any]]:
    """Parse a fetched document; only a mapping with an openapi/swagger key is accepted."""
    content_type = (resp.headers.get("Content-Type") or "").lower()
    path = urlparse(url).path.lower()
    if "application/json" in content_type or path.endswith(".json"):
        fmt = "json"
    elif "yaml" in content_type or path.endswith((".yaml", ".yml")):
        fmt = "yaml"
    else:
        fmt = None
    try:
        doc = parse_document_text(resp.text, fmt)
    except SpecLoadError as e:
        logger.debug("Not a spec document at %s: %s", url, e)
        return None
    return doc if is_spec_document(doc) else None


# ----------------------- Funtion extract_sensitive_fields ----------------------------#
def extract_sensitive_fields(
    body: Any,
    custom_fields: Iterable[str] = (),
    prefix: str = "",
    depth: int = 0,
) -> Tuple[str, ...]:
    """Dotted paths of sensitive keys in a JSON body; list elements add no segment."""
    if depth > MAX_BODY_DEPTH:
        return ()
    custom = tuple(custom_fields or ())
    if isinstance(body, list):
        found: Tuple[str, ...] = ()
        for element in body:
            for name in extract_sensitive_fields(element, custom, prefix, depth + 1):
                if name not in found:
                    found += (name,)
        return found
    if not isinstance(body, dict):
        return ()
    found = ()
    for key, value in body.items():
        full = f"{prefix}.{key}" if prefix else str(key)
        if classify(str(key), custom).is_sensitive:
            found += (full,)
        if isinstance(value, (dict, list)):
            found += extract_sensitive_fields(value, custom, full, depth + 1)
    return found


class LiveDiscovery:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        delay_ms: int = DEFAULT_DELAY_MS,
        custom_sensitive_fields: Iterable[str] = (),
        user_agent: Optional[str] = None,
        verify: bool = True,
        show_progress: bool = False,
        spec_paths: Optional[List[str]] = None,
        endpoint_paths: Optional[List[str]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session = session or build_session(user_agent, verify)
        self.timeout = float(timeout)
        self.delay = max(0, int(delay_ms)) / 1000.0
        self.custom_sensitive_fields = list(custom_sensitive_fields or [])
        self.show_progress = show_progress
        self.spec_paths = list(spec_paths if spec_paths is not None else SPEC_PATHS_TO_PROBE)
        self.endpoint_paths = list(endpoint_paths if endpoint_paths is not None else COMMON_ENDPOINT_PATHS)
        self._sleep = sleep
        self._responded = False

    # ----------------------- Funtion _get ----------------------------#
    def _get(self, url: str) -> Optional[requests.Response]:
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.Timeout:
            logger.info("Endpoint timed out: %s", url)
            return None
        except requests.exceptions.RequestException as e:
            logger.debug("Request to %s failed: %s", url, e)
            return None
        self._responded = True
        return resp

    # ----------------------- Funtion fetch_spec ----------------------------#
    def fetch_spec(self, url: str) -> Optional[Dict[str, Any]]:
        resp = self._get(url)
        if not _is_success(resp):
            return None
        return parse_spec_response(resp, url)

    # ----------------------- Funtion discover_spec ----------------------------#
    def discover_spec(self, base_url: str) -> Optional[Tuple[Dict[str, Any], str]]:
        for spec_path in self.spec_paths:
            spec_url = join_url(base_url, spec_path)
            spec = self.fetch_spec(spec_url)
            if spec is not None:
                logger.info("Found OpenAPI spec at %s", spec_url)
                return spec, spec_url
        return None

    # ----------------------- Funtion robots_denied ----------------------------#
    def robots_denied(self, base_url: str) -> bool:
        parsed = urlparse(base_url)
        resp = self._get(f"{parsed.scheme}://{parsed.netloc}/robots.txt")
        return resp is not None and resp.status_code == 403

    # ----------------------- Funtion probe_endpoint ----------------------------#
    def probe_endpoint(self, base_url: str, path: str) -> Optional[ProbeResult]:
        resp = self._get(join_url(base_url, path))
        if not _is_success(resp):
            return None

        result = ProbeResult(
            path=path,
            status=resp.status_code,
            auth_detected=bool(resp.headers.get("WWW-Authenticate")),
        )
        if "application/json" in (resp.headers.get("Content-Type") or "").lower():
            try:
                body = resp.json()
            except (ValueError, RecursionError):
                logger.debug("Unparsable JSON body at %s", path)
            else:
                result.has_json_body = True
                result.sensitive_fields = list(extract_sensitive_fields(body, self.custom_sensitive_fields))
        return result

    # ----------------------- Funtion probe_endpoints ----------------------------#
    def probe_endpoints(self, base_url: str) -> List[ProbeResult]:
        results: List[ProbeResult] = []
        for path in tqdm(self.endpoint_paths, desc="Probing endpoints", unit="path", disable=not self.show_progress):
            result = self.probe_endpoint(base_url, path)
            if result is not None:
                logger.debug("Probe %s -> %s (%d sensitive fields)", path, result.status, len(result.sensitive_fields))
                results.append(result)
            if self.delay:
                self._sleep(self.delay)
        return results

    # ----------------------- Funtion discover ----------------------------#
    def discover(self, url: str) -> DiscoveryResult:
        url = normalize_url(url)
        self._responded = False

        if is_direct_spec_url(url):
            spec = self.fetch_spec(url)
            if spec is not None:
                logger.info("Valid OpenAPI/Swagger spec loaded from %s", url)
                return DiscoveryResult(kind=KIND_OPENAPI, source=url, spec=spec)
            logger.warning("Could not load spec from %s", url)

        base_url = base_url_for(url)
        found = self.discover_spec(base_url)
        if found is not None:
            spec, spec_url = found
            return DiscoveryResult(kind=KIND_OPENAPI, source=spec_url, spec=spec)

        logger.warning("No OpenAPI spec found. Probing common endpoints...")
        if self.robots_denied(base_url):
            logger.warning("robots.txt answered 403 - not probing %s any further", base_url)
            return DiscoveryResult(kind=KIND_PROBED, source=base_url, probes=[], reachable=True)

        probes = self.probe_endpoints(base_url)
        return DiscoveryResult(kind=KIND_PROBED, source=base_url, probes=probes, reachable=self._responded)


# ----------------------- Funtion _fields_to_schema ----------------------------#
def _fields_to_schema(fields: Iterable[str]) -> SchemaNode:
    tree: Dict[str, Any] = {}
    for name in fields:
        cur = tree
        for part in name.split("."):
            cur = cur.setdefault(part, {})

    def _node(sub: Dict[str, Any]) -> SchemaNode:
        # leaf type is unknown, so leaves are generic scalars
        return SchemaNode.obj({k: (_node(v) if v else SchemaNode.scalar()) for k, v in sub.items()})

    return _node(tree)


# ----------------------- Funtion adapt_probe_results ----------------------------#
def adapt_probe_results(results: Iterable[ProbeResult], reconstruct_schema: bool = False) -> CanonicalSpec:
    """Probe results -> CanonicalSpec; fields go either to probed_sensitive_fields or a synthetic schema."""
    spec = CanonicalSpec(source_kind=SOURCE_LIVE_PROBE)
    for result in results or ():
        if not (200 <= int(result.status) < 300):
            continue
        fields = list(result.sensitive_fields or [])
        schema = _fields_to_schema(fields) if reconstruct_schema and result.has_json_body and fields else None
        spec.add_operation(result.path, "get", Operation(
            security=[PROBE_AUTH_REQUIREMENT] if result.auth_detected else [],
            responses={str(result.status): ResponseSpec(schema=schema)},
            probed=True,
            probed_sensitive_fields=[] if schema is not None else fields,
        ))
    return spec


# ----------------------- Funtion adapt_discovery ----------------------------#
def adapt_discovery(result: DiscoveryResult, reconstruct_schema: bool = False) -> CanonicalSpec:
    if result.kind == KIND_OPENAPI:
        return adapt_openapi(result.spec or {})
    return adapt_probe_results(result.probes, reconstruct_schema=reconstruct_schema)


# ----------------------- Funtion scan_live_url ----------------------------#
def scan_live_url(url: str, **kwargs) -> DiscoveryResult:
    return LiveDiscovery(**kwargs).discover(url)
