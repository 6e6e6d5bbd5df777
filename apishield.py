########################################################
# APISHIELD - API Security Scanner                     #
# Licensed under AGPL-V3.0                             #
# Author: Perry Mertens pamsniffer@gmail.com (C) 2025  #
########################################################

"""APISHIELD checks OpenAPI/Swagger specs, Postman collections, HAR captures or a
live URL for endpoints without authentication, sensitive fields in responses and
excessive data exposure.
Important: live scanning is only permitted against systems for which you have
explicit authorization.
"""

from __future__ import annotations
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import urllib3
from colorama import init as _colorama_init

from canonical_model import CanonicalSpec, Finding
from config_loader import COMPLIANCE_MODES, ConfigError, ScanConfig, Settings, load_config, load_settings
from har_adapter import adapt_har, looks_like_har
from live_discovery import KIND_OPENAPI, DiscoveryResult, LiveDiscovery, adapt_discovery
from openapi_universal import SpecLoadError, adapt_openapi, load_spec
from postman_adapter import adapt_postman, looks_like_collection
from report_utils import HTMLReportGenerator, print_findings, print_threat_model, save_json_report, styled_print
from rule_engine import MESSAGE_RULES, scan
from version import __version__

logger = logging.getLogger("apishield")

EXIT_OK = 0
EXIT_FINDINGS = 1
EXIT_ERROR = 2


class TargetUnreachableError(Exception):
    pass


#================funtion detect_input_type detect_input_type =============
def detect_input_type(value: str) -> str:
    lower = str(value).strip().lower()
    if lower.startswith(("http://", "https://")):
        return "url"
    if lower.endswith(".postman_collection.json"):
        return "postman"
    if lower.endswith(".har"):
        return "har"
    if lower.endswith(".json"):
        return "json"
    if lower.endswith((".yaml", ".yml")):
        return "yaml"
    return "unknown"


#================funtion adapt_document adapt_document =============
def adapt_document(doc: dict, kind: str) -> CanonicalSpec:
    if kind == "postman":
        styled_print("Detected Postman Collection", "info")
        return adapt_postman(doc)
    if kind == "har":
        styled_print("Detected HAR file", "info")
        return adapt_har(doc)
    if kind == "json":
        if looks_like_har(doc):
            return adapt_document(doc, "har")
        if looks_like_collection(doc):
            return adapt_document(doc, "postman")
    styled_print("Detected OpenAPI/Swagger spec", "info")
    return adapt_openapi(doc)


#================funtion build_canonical build_canonical =============
def build_canonical(
    value: str,
    settings: Optional[Settings] = None,
    config: Optional[ScanConfig] = None,
    show_progress: bool = False,
    discovery: Optional[LiveDiscovery] = None,
    reconstruct_schema: bool = False,
) -> Tuple[CanonicalSpec, Optional[DiscoveryResult]]:
    kind = detect_input_type(value)
    if kind == "url":
        settings = settings or Settings()
        config = config or ScanConfig()
        discovery = discovery or LiveDiscovery(
            timeout=settings.timeout,
            delay_ms=settings.probe_delay_ms,
            custom_sensitive_fields=config.custom_sensitive_fields,
            user_agent=settings.user_agent,
            verify=settings.verify_tls,
            show_progress=show_progress,
        )
        styled_print(f"Scanning live URL {value}", "run")
        result = discovery.discover(value)
        if not result.reachable:
            raise TargetUnreachableError(f"Target unreachable: {value}")
        if result.kind == KIND_OPENAPI:
            styled_print(f"Using OpenAPI spec from {result.source}", "ok")
        else:
            styled_print(f"No spec found - {len(result.probes)} endpoint(s) responded to probing", "warn")
        return adapt_discovery(result, reconstruct_schema=reconstruct_schema), result
    if kind == "unknown":
        raise SpecLoadError(f"Unsupported file type: {Path(value).suffix or value} (supported: .yaml, .yml, .json, .postman_collection.json, .har, http(s) URL)")
    return adapt_document(load_spec(value), kind), None


#================funtion apply_rule_levels apply_rule_levels =============
def apply_rule_levels(findings: List[Finding], config: ScanConfig) -> Tuple[List[Finding], List[Finding]]:
    """Drop findings of rules set to 'off'; return (visible, failing)."""
    visible: List[Finding] = []
    failing: List[Finding] = []
    for f in findings:
        level = config.rule_level(MESSAGE_RULES.get(f.message, ""))
        if level == "off":
            continue
        visible.append(f)
        if level == "error":
            failing.append(f)
    return visible, failing


#================funtion configure_logging configure_logging =============
def configure_logging(debug: bool = False, log_file: Optional[str] = None) -> None:
    if debug:
        logging.basicConfig(level=logging.DEBUG, format="[DEBUG] %(message)s")
    else:
        logging.basicConfig(level=logging.INFO, format="[INFO] %(message)s")
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        file_handler.setLevel(logging.DEBUG)
        logging.getLogger().addHandler(file_handler)


#================funtion build_parser build_parser =============
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="apishield", description=f"APISHIELD {__version__} - API Security Scanner")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    sc = sub.add_parser("scan", help="Scan an API spec, Postman collection, HAR file, or URL for security issues")
    sc.add_argument("input", help="Path to spec file or URL")
    sc.add_argument("--compliance", choices=sorted(COMPLIANCE_MODES), help="Only report fields regulated under this framework")
    sc.add_argument("--config", help="Path to config file (default: ./config.apishield.json)")
    sc.add_argument("--ignore", action="append", default=[], metavar="PATTERN", help="Ignore paths matching PATTERN (supports *), repeatable")
    sc.add_argument("--sensitive", action="append", default=[], metavar="FIELD", help="Extra sensitive field pattern, repeatable")
    sc.add_argument("--threat-model", action="store_true", help="Group findings by STRIDE category")
    sc.add_argument("--json", metavar="PATH", help="Write a JSON report")
    sc.add_argument("--html", metavar="PATH", help="Write an HTML report")
    sc.add_argument("--timeout", type=float, help="Live request timeout in seconds (default: 5)")
    sc.add_argument("--delay-ms", type=int, help="Delay between live endpoint probes in ms (default: 800)")
    sc.add_argument("--reconstruct-schema", action="store_true", help="Rebuild a response schema from probed fields")
    sc.add_argument("--insecure", action="store_true", help="Disable TLS certificate validation (DANGEROUS, use only for testing)")
    sc.add_argument("--no-progress", action="store_true", help="Hide probe progress bar")
    sc.add_argument("--debug", action="store_true", help="Enable debug output (verbose logging)")
    sc.add_argument("--log-file", help="Also write a detailed log to this file")
    return parser


#================funtion run_scan run_scan =============
def run_scan(args: argparse.Namespace) -> int:
    settings = load_settings()
    try:
        config = load_config(path=args.config).with_overrides(
            ignore_paths=args.ignore,
            custom_sensitive_fields=args.sensitive,
            compliance=args.compliance,
        )
    except ConfigError as e:
        styled_print(str(e), "fail")
        return EXIT_ERROR

    if args.timeout is not None:
        settings.timeout = args.timeout
    if args.delay_ms is not None:
        settings.probe_delay_ms = args.delay_ms
    if args.insecure:
        settings.verify_tls = False
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    try:
        spec, _ = build_canonical(
            args.input,
            settings,
            config,
            show_progress=not args.no_progress and sys.stderr.isatty(),
            reconstruct_schema=args.reconstruct_schema,
        )
    except (FileNotFoundError, SpecLoadError, TargetUnreachableError) as e:
        logger.error("Scan failed: %s", e)
        styled_print(str(e), "fail")
        return EXIT_ERROR

    logger.debug("Canonical spec: %d operations (%s)", spec.operation_count(), spec.source_kind)
    findings = scan(spec, config)
    visible, failing = apply_rule_levels(findings, config)

    if args.threat_model:
        print_threat_model(visible)
    else:
        print_findings(visible)

    if args.json:
        out = save_json_report(visible, args.json, target=args.input, source_kind=spec.source_kind)
        styled_print(f"JSON report written -> {out}", "ok")
    if args.html:
        out = HTMLReportGenerator(visible, base_url=args.input).save(args.html)
        styled_print(f"HTML report written -> {out}", "ok")

    return EXIT_FINDINGS if failing else EXIT_OK


#================funtion main main =============
def main(argv: Optional[List[str]] = None) -> int:
    _colorama_init()
    args = build_parser().parse_args(argv)
    configure_logging(getattr(args, "debug", False), getattr(args, "log_file", None))
    if args.command == "scan":
        return run_scan(args)
    return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
