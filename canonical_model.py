########################################################
# APISHIELD - API Security Scanner                     #
# Licensed under AGPL-V3.0                             #
# Author: Perry Mertens pamsniffer@gmail.com (C) 2025  #
########################################################
"""Normalized API description shared by every input adapter and the rule engine.

An adapter builds exactly one CanonicalSpec per scan; the rule engine reads it
once. Nothing here performs I/O.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

__all__ = [
    "SOURCE_OPENAPI3",
    "SOURCE_SWAGGER2",
    "SOURCE_COLLECTION",
    "SOURCE_TRAFFIC",
    "SOURCE_LIVE_PROBE",
    "SOURCE_KINDS",
    "SchemaNode",
    "ResponseSpec",
    "Operation",
    "CanonicalSpec",
    "Finding",
    "SEVERITY_HIGH",
    "SEVERITY_MEDIUM",
]

SOURCE_OPENAPI3 = "openapi3"
SOURCE_SWAGGER2 = "swagger2-converted"
SOURCE_COLLECTION = "collection"
SOURCE_TRAFFIC = "traffic-capture"
SOURCE_LIVE_PROBE = "live-probe"
SOURCE_KINDS = (SOURCE_OPENAPI3, SOURCE_SWAGGER2, SOURCE_COLLECTION, SOURCE_TRAFFIC, SOURCE_LIVE_PROBE)

SEVERITY_HIGH = "high"
SEVERITY_MEDIUM = "medium"

KIND_OBJECT = "object"
KIND_ARRAY = "array"
KIND_SCALAR = "scalar"


@dataclass(frozen=True)
class SchemaNode:
    kind: str = KIND_SCALAR
    properties: Dict[str, "SchemaNode"] = field(default_factory=dict)
    items: Optional["SchemaNode"] = None

    # ----------------------- Funtion obj ----------------------------#
    @classmethod
    def obj(cls, properties: Optional[Dict[str, "SchemaNode"]] = None) -> "SchemaNode":
        return cls(kind=KIND_OBJECT, properties=dict(properties or {}))

    # ----------------------- Funtion array ----------------------------#
    @classmethod
    def array(cls, items: Optional["SchemaNode"] = None) -> "SchemaNode":
        return cls(kind=KIND_ARRAY, items=items)

    # ----------------------- Funtion scalar ----------------------------#
    @classmethod
    def scalar(cls) -> "SchemaNode":
        return cls(kind=KIND_SCALAR)

    @property
    def is_object(self) -> bool:
        return self.kind == KIND_OBJECT

    @property
    def is_array(self) -> bool:
        return self.kind == KIND_ARRAY


@dataclass
class ResponseSpec:
    schema: Optional[SchemaNode] = None


@dataclass
class Operation:
    # None = inherit CanonicalSpec.global_security; [] = explicitly no auth
    security: Optional[List[str]] = None
    responses: Dict[str, ResponseSpec] = field(default_factory=dict)
    probed: bool = False
    probed_sensitive_fields: List[str] = field(default_factory=list)


@dataclass
class CanonicalSpec:
    source_kind: str
    paths: Dict[str, Dict[str, Operation]] = field(default_factory=dict)
    global_security: List[str] = field(default_factory=list)
    regulatory_meta: Optional[Dict[str, Any]] = None

    # ----------------------- Funtion effective_security ----------------------------#
    def effective_security(self, op: Operation) -> List[str]:
        if op.security is not None:
            return list(op.security)
        return list(self.global_security)

    # ----------------------- Funtion add_operation ----------------------------#
    def add_operation(self, path: str, method: str, op: Operation) -> Operation:
        """Register *op* under path/method, replacing any earlier one for that pair."""
        self.paths.setdefault(path, {})[method.lower()] = op
        return op

    # ----------------------- Funtion operation_count ----------------------------#
    def operation_count(self) -> int:
        return sum(len(methods) for methods in self.paths.values())


@dataclass
class Finding:
    severity: str
    message: str
    detail: str
    fix: str
    regulations: Optional[List[str]] = None

    # ----------------------- Funtion to_dict ----------------------------#
    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "severity": self.severity,
            "message": self.message,
            "detail": self.detail,
            "fix": self.fix,
        }
        if self.regulations is not None:
            out["regulations"] = list(self.regulations)
        return out
