########################################################
# APISHIELD - API Security Scanner                     #
# Licensed under AGPL-V3.0                             #
# Author: Perry Mertens pamsniffer@gmail.com (C) 2025  #
########################################################
"""Rule engine: walks a CanonicalSpec and returns findings.

Rules, evaluated per operation in path order:

* missing authentication - no effective security and the path does not look
  public;
* sensitive data exposure - sensitive field names in a 2xx response schema, or
  in the fields recorded by a live probe (filtered by regulation in compliance
  mode);
* excessive data exposure - a 2xx object schema with more than 20 direct
  properties (never filtered by compliance mode).

The engine does no I/O. Finding messages are a fixed vocabulary that the
report layer uses as lookup keys.
"""
from __future__ import annotations
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union
import logging
import re

from canonical_model import SEVERITY_HIGH, SEVERITY_MEDIUM, CanonicalSpec, Finding, Operation, ResponseSpec, SchemaNode
from config_loader import COMPLIANCE_MODES, ScanConfig
from sensitive_fields import classify, regulations_for

__all__ = [
    "MSG_MISSING_AUTH",
    "MSG_SENSITIVE_DATA",
    "MSG_EXCESSIVE_DATA",
    "COMPLIANCE_MESSAGES",
    "MESSAGE_RULES",
    "EXCESSIVE_FIELD_THRESHOLD",
    "LIKELY_PUBLIC_RE",
    "matches_ignore",
    "is_likely_public",
    "collect_sensitive_fields",
    "filter_for_compliance",
    "scan",
    "findings_to_dicts",
]

logger = logging.getLogger("rule_engine")

MSG_MISSING_AUTH = "Missing authentication"
MSG_SENSITIVE_DATA = "Sensitive data exposed in response"
MSG_EXCESSIVE_DATA = "Excessive data exposure"
COMPLIANCE_MESSAGES = {
    "gdpr": "GDPR compliance violation",
    "ccpa": "CCPA compliance violation",
    "hipaa": "HIPAA compliance violation",
    "pci": "PCI-DSS compliance violation",
}

RULE_MISSING_AUTH = "missingAuth"
RULE_SENSITIVE_DATA = "sensitiveData"
RULE_EXCESSIVE_DATA = "excessiveData"
MESSAGE_RULES = {
    MSG_MISSING_AUTH: RULE_MISSING_AUTH,
    MSG_SENSITIVE_DATA: RULE_SENSITIVE_DATA,
    MSG_EXCESSIVE_DATA: RULE_EXCESSIVE_DATA,
    **{msg: RULE_SENSITIVE_DATA for msg in COMPLIANCE_MESSAGES.values()},
}

EXCESSIVE_FIELD_THRESHOLD = 20
MAX_WALK_DEPTH = 64

LIKELY_PUBLIC_RE = re.compile(
    r"login|register|signup|auth|public|health|status|metrics|healthz|readiness|version|openapi\.json|swagger\.json",
    re.IGNORECASE,
)

FIX_MISSING_AUTH = "Add a 'security' block to the operation or global spec."
FIX_SENSITIVE_SCHEMA = "Remove or mask sensitive fields from the response schema."
FIX_SENSITIVE_PROBED = "Remove or mask sensitive fields from the response."
FIX_EXCESSIVE = "Reduce response fields or implement field filtering (e.g., ?fields=id,name)"

ConfigLike = Union[ScanConfig, Mapping[str, Any], None]


# ----------------------- Funtion _ignore_regex ----------------------------#
def _ignore_regex(pattern: str) -> "re.Pattern[str]":
    return re.compile("^" + ".*".join(re.escape(part) for part in pattern.split("*")) + "$")


# ----------------------- Funtion matches_ignore ----------------------------#
def matches_ignore(path: str, patterns: Iterable[str]) -> bool:
    """Wildcard patterns must match the whole path; plain ones match as substrings."""
    for pattern in patterns or ():
        if not pattern:
            continue
        if "*" in pattern:
            if _ignore_regex(pattern).match(path):
                return True
        elif pattern in path:
            return True
    return False


# ----------------------- Funtion is_likely_public ----------------------------#
def is_likely_public(path: str) -> bool:
    return bool(LIKELY_PUBLIC_RE.search(path or ""))


# ----------------------- Funtion collect_sensitive_fields ----------------------------#
def collect_sensitive_fields(
    node: Optional[SchemaNode],
    custom_fields: Iterable[str] = (),
    prefix: str = "",
    depth: int = 0,
) -> Tuple[str, ...]:
    """Dotted paths of every sensitive property below *node* (array levels add no segment)."""
    if not isinstance(node, SchemaNode) or depth > MAX_WALK_DEPTH:
        return ()
    if node.is_array:
        return collect_sensitive_fields(node.items, custom_fields, prefix, depth + 1)
    if not node.is_object:
        return ()
    if not isinstance(node.properties, dict):
        logger.debug("Skipping malformed schema node at '%s'", prefix or "<root>")
        return ()

    custom = tuple(custom_fields or ())
    found: Tuple[str, ...] = ()
    for name, child in node.properties.items():
        full = f"{prefix}.{name}" if prefix else str(name)
        if classify(str(name), custom).is_sensitive:
            found += (full,)
        found += collect_sensitive_fields(child, custom, full, depth + 1)
    return found


# ----------------------- Funtion filter_for_compliance ----------------------------#
def filter_for_compliance(fields: Iterable[str], regulation: str) -> List[str]:
    return [f for f in fields if regulation in regulations_for(f.rsplit(".", 1)[-1])]


# ----------------------- Funtion _sensitive_finding ----------------------------#
def _sensitive_finding(op_id: str, fields: List[str], config: ScanConfig, fix: str) -> Optional[Finding]:
    if not fields:
        return None
    if not config.compliance:
        return Finding(
            severity=SEVERITY_HIGH,
            message=MSG_SENSITIVE_DATA,
            detail=f"{op_id} returns: {', '.join(fields)}",
            fix=fix,
        )

    regulation = COMPLIANCE_MODES[config.compliance]
    matched = filter_for_compliance(fields, regulation)
    if not matched:
        return None
    label = config.compliance.upper()
    return Finding(
        severity=SEVERITY_HIGH,
        message=COMPLIANCE_MESSAGES[config.compliance],
        detail=f"{op_id} exposes {label}-regulated data: {', '.join(matched)}",
        fix=fix.replace("sensitive fields", f"{label}-regulated fields"),
        regulations=[regulation],
    )


# ----------------------- Funtion _coerce_config ----------------------------#
def _coerce_config(config: ConfigLike) -> ScanConfig:
    if config is None:
        return ScanConfig()
    if isinstance(config, ScanConfig):
        return config
    return ScanConfig.from_dict(config)


# ----------------------- Funtion _scan_operation ----------------------------#
def _scan_operation(spec: CanonicalSpec, path: str, method: str, op: Operation, config: ScanConfig) -> List[Finding]:
    findings: List[Finding] = []
    op_id = f"{method.upper()} {path}"

    if not spec.effective_security(op) and not is_likely_public(path):
        findings.append(Finding(
            severity=SEVERITY_HIGH,
            message=MSG_MISSING_AUTH,
            detail=f"Endpoint {op_id} has no security scheme defined.",
            fix=FIX_MISSING_AUTH,
        ))

    responses = op.responses if isinstance(op.responses, dict) else {}
    for status, response in responses.items():
        if not str(status).startswith("2"):
            continue
        schema = response.schema if isinstance(response, ResponseSpec) else None
        if not isinstance(schema, SchemaNode):
            continue

        fields = list(collect_sensitive_fields(schema, config.custom_sensitive_fields))
        finding = _sensitive_finding(op_id, fields, config, FIX_SENSITIVE_SCHEMA)
        if finding is not None:
            findings.append(finding)

        if schema.is_object and isinstance(schema.properties, dict):
            field_count = len(schema.properties)
            if field_count > EXCESSIVE_FIELD_THRESHOLD:
                findings.append(Finding(
                    severity=SEVERITY_MEDIUM,
                    message=MSG_EXCESSIVE_DATA,
                    detail=f"{op_id} returns {field_count} fields in response",
                    fix=FIX_EXCESSIVE,
                ))

    if op.probed and op.probed_sensitive_fields:
        finding = _sensitive_finding(op_id, list(op.probed_sensitive_fields), config, FIX_SENSITIVE_PROBED)
        if finding is not None:
            findings.append(finding)

    return findings


# ----------------------- Funtion scan ----------------------------#
def scan(spec: CanonicalSpec, config: ConfigLike = None) -> List[Finding]:
    config = _coerce_config(config)
    findings: List[Finding] = []
    paths = spec.paths if isinstance(spec.paths, dict) else {}

    for path, methods in paths.items():
        if matches_ignore(path, config.ignore_paths):
            logger.debug("Ignoring path %s", path)
            continue
        if not isinstance(methods, dict):
            logger.debug("Skipping malformed path item %s", path)
            continue
        for method, op in methods.items():
            if not isinstance(op, Operation):
                logger.debug("Skipping malformed operation %s %s", method, path)
                continue
            findings.extend(_scan_operation(spec, path, str(method), op, config))

    logger.debug("Rule engine produced %d findings (source=%s)", len(findings), spec.source_kind)
    return findings


# ----------------------- Funtion findings_to_dicts ----------------------------#
def findings_to_dicts(findings: Iterable[Finding]) -> List[Dict[str, Any]]:
    return [f.to_dict() for f in findings]
