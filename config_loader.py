########################################################
# APISHIELD - API Security Scanner                     #
# Licensed under AGPL-V3.0                             #
# Author: Perry Mertens pamsniffer@gmail.com (C) 2025  #
########################################################
from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional
import json
import logging
import os

from dotenv import find_dotenv, load_dotenv

__all__ = [
    "CONFIG_FILENAME",
    "COMPLIANCE_MODES",
    "RULE_LEVELS",
    "DEFAULT_RULES",
    "ConfigError",
    "ScanConfig",
    "Settings",
    "load_config",
    "load_settings",
]

logger = logging.getLogger("config_loader")

CONFIG_FILENAME = "config.apishield.json"
COMPLIANCE_MODES = {"gdpr": "GDPR", "ccpa": "CCPA", "hipaa": "HIPAA", "pci": "PCI-DSS"}
RULE_LEVELS = ("error", "warn", "off")
DEFAULT_RULES = {"missingAuth": "error", "sensitiveData": "error", "excessiveData": "warn"}


class ConfigError(Exception):
    pass


# ----------------------- Funtion _union ----------------------------#
def _union(*lists: Iterable[Any]) -> List[str]:
    out: List[str] = []
    for seq in lists:
        for item in seq or ():
            s = str(item)
            if s and s not in out:
                out.append(s)
    return out


# ----------------------- Funtion _list_option ----------------------------#
def _list_option(data: Mapping[str, Any], camel: str, snake: str) -> List[str]:
    value = data.get(camel, data.get(snake))
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"'{camel}' must be a list, got {type(value).__name__}")
    return list(value)


@dataclass
class ScanConfig:
    ignore_paths: List[str] = field(default_factory=list)
    custom_sensitive_fields: List[str] = field(default_factory=list)
    compliance: Optional[str] = None
    rules: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_RULES))

    def __post_init__(self) -> None:
        self.ignore_paths = _union(self.ignore_paths)
        self.custom_sensitive_fields = _union(self.custom_sensitive_fields)
        if self.compliance is not None:
            mode = str(self.compliance).strip().lower()
            if not mode:
                mode = None
            elif mode not in COMPLIANCE_MODES:
                raise ConfigError(f"Unknown compliance mode '{self.compliance}' (use: {', '.join(COMPLIANCE_MODES)})")
            self.compliance = mode
        rules = dict(DEFAULT_RULES)
        for name, level in (self.rules or {}).items():
            level = str(level).lower()
            if level not in RULE_LEVELS:
                raise ConfigError(f"Rule '{name}' has invalid level '{level}' (use: {', '.join(RULE_LEVELS)})")
            rules[str(name)] = level
        self.rules = rules

    @property
    def compliance_regulation(self) -> Optional[str]:
        return COMPLIANCE_MODES.get(self.compliance) if self.compliance else None

    # ----------------------- Funtion from_dict ----------------------------#
    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ScanConfig":
        data = data or {}
        if not isinstance(data, Mapping):
            raise ConfigError("Configuration must be a JSON object")
        return cls(
            ignore_paths=_list_option(data, "ignorePaths", "ignore_paths"),
            custom_sensitive_fields=_list_option(data, "customSensitiveFields", "custom_sensitive_fields"),
            compliance=data.get("compliance"),
            rules=dict(data.get("rules") or {}),
        )

    # ----------------------- Funtion with_overrides ----------------------------#
    def with_overrides(
        self,
        ignore_paths: Iterable[str] = (),
        custom_sensitive_fields: Iterable[str] = (),
        compliance: Optional[str] = None,
    ) -> "ScanConfig":
        return ScanConfig(
            ignore_paths=_union(self.ignore_paths, ignore_paths),
            custom_sensitive_fields=_union(self.custom_sensitive_fields, custom_sensitive_fields),
            compliance=compliance if compliance else self.compliance,
            rules=dict(self.rules),
        )

    # ----------------------- Funtion rule_level ----------------------------#
    def rule_level(self, rule: str) -> str:
        return self.rules.get(rule, "error")


@dataclass
class Settings:
    timeout: float = 5.0
    probe_delay_ms: int = 800
    user_agent: Optional[str] = None
    verify_tls: bool = True


# ----------------------- Funtion load_config ----------------------------#
def load_config(cwd: Optional[str] = None, path: Optional[str] = None) -> ScanConfig:
    """Read ``config.apishield.json`` and merge it over the defaults.

    An explicit *path* (or ``APISHIELD_CONFIG``) must exist; the implicit file in
    *cwd* is optional and falls back to defaults when it cannot be parsed.
    """
    explicit = path or os.getenv("APISHIELD_CONFIG")
    if explicit:
        cfg_path = Path(explicit)
        if not cfg_path.is_file():
            raise ConfigError(f"Config file not found: {cfg_path}")
    else:
        cfg_path = Path(cwd or os.getcwd()) / CONFIG_FILENAME
        if not cfg_path.is_file():
            return ScanConfig()

    try:
        user_config = json.loads(cfg_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        if explicit:
            raise ConfigError(f"Invalid config file {cfg_path}: {e}") from e
        logger.warning("Invalid %s - using defaults (%s)", cfg_path.name, e)
        return ScanConfig()

    config = ScanConfig.from_dict(user_config)
    logger.info("Using config from %s", cfg_path)
    return config


# ----------------------- Funtion _env_float ----------------------------#
def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r (not a number)", name, raw)
        return default


# ----------------------- Funtion load_settings ----------------------------#
def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    if env is None:
        load_dotenv(find_dotenv(usecwd=True), override=False)
        env = os.environ
    verify = str(env.get("APISHIELD_VERIFY_TLS", "true")).strip().lower() not in ("0", "false", "no")
    return Settings(
        timeout=_env_float(env, "APISHIELD_TIMEOUT", 5.0),
        probe_delay_ms=int(_env_float(env, "APISHIELD_PROBE_DELAY_MS", 800)),
        user_agent=(env.get("APISHIELD_USER_AGENT") or "").strip() or None,
        verify_tls=verify,
    )
