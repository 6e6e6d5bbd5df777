###################################
# APISHIELD - API Security Scanner #
# Licensed under the MIT License   #
# Author: Perry Mertens, 2025      #
###################################
from __future__ import annotations
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union
import html
import json

from colorama import Fore, Style

from canonical_model import Finding
from version import __version__

# ---------------- Threat model lookup (keyed by finding message) ----------------
THREAT_MAP: Dict[str, Dict[str, str]] = {
    "Missing authentication": {
        "stride": "Spoofing",
        "impact": "An attacker can access or modify resources without authentication.",
        "owasp": "API1:2023 - Broken Object Level Authorization",
        "severity": "high",
    },
    "Sensitive data exposed in response": {
        "stride": "Information Disclosure",
        "impact": "PII, secrets, or internal data may be leaked to unauthorized parties.",
        "owasp": "API3:2023 - Excessive Data Exposure",
        "severity": "high",
    },
    "Excessive data exposure": {
        "stride": "Information Disclosure",
        "impact": "Large responses increase attack surface and risk of accidental data leaks.",
        "owasp": "API3:2023 - Excessive Data Exposure",
        "severity": "medium",
    },
    "GDPR compliance violation": {
        "stride": "Information Disclosure",
        "impact": "Personal data exposure violates European data protection regulations.",
        "owasp": "API3:2023 - Excessive Data Exposure",
        "severity": "high",
    },
    "CCPA compliance violation": {
        "stride": "Information Disclosure",
        "impact": "Personal data exposure violates California privacy rights.",
        "owasp": "API3:2023 - Excessive Data Exposure",
        "severity": "high",
    },
    "HIPAA compliance violation": {
        "stride": "Information Disclosure",
        "impact": "Health information exposure violates healthcare data protection laws.",
        "owasp": "API3:2023 - Excessive Data Exposure",
        "severity": "high",
    },
    "PCI-DSS compliance violation": {
        "stride": "Information Disclosure",
        "impact": "Payment data exposure violates card industry security standards.",
        "owasp": "API3:2023 - Excessive Data Exposure",
        "severity": "high",
    },
}

UNKNOWN_THREAT = {"stride": "Unknown", "impact": "Unknown impact.", "owasp": "N/A", "severity": "medium"}

STRIDE_ORDER = [
    "Spoofing",
    "Tampering",
    "Repudiation",
    "Information Disclosure",
    "Denial of Service",
    "Elevation of Privilege",
    "Unknown",
]

SEVERITY_ORDER = ["high", "medium"]
SEVERITY_COLORS = {"high": Fore.RED, "medium": Fore.YELLOW}


# ----------------------- Funtion threat_for ----------------------------#
def threat_for(message: str) -> Dict[str, str]:
    return dict(THREAT_MAP.get(message, UNKNOWN_THREAT))


# ----------------------- Funtion styled_print ----------------------------#
def styled_print(message: str, status: str = "info") -> None:
    symbols = {"info": "Info:", "ok": "OK:", "warn": "WARNING:", "fail": "FAIL:", "run": "->", "done": "Done"}
    colors = {"info": Fore.BLUE, "ok": Fore.GREEN, "warn": Fore.YELLOW, "fail": Fore.RED, "run": Fore.CYAN, "done": Fore.GREEN}
    print(f"{colors.get(status, '')}{symbols.get(status, '')} {message}{Style.RESET_ALL}")


# ----------------------- Funtion summarize ----------------------------#
def summarize(findings: Iterable[Finding]) -> Dict[str, Any]:
    findings = list(findings)
    by_severity = Counter(f.severity for f in findings)
    by_message = Counter(f.message for f in findings)
    return {
        "total": len(findings),
        "by_severity": {s: by_severity.get(s, 0) for s in SEVERITY_ORDER},
        "by_message": dict(by_message),
    }


# ----------------------- Funtion print_findings ----------------------------#
def print_findings(findings: List[Finding]) -> None:
    if not findings:
        print(f"{Fore.GREEN}No high-risk issues found!{Style.RESET_ALL}")
        return
    print(f"{Fore.RED}Found {len(findings)} security issue(s):{Style.RESET_ALL}\n")
    for f in findings:
        color = SEVERITY_COLORS.get(f.severity, "")
        print(f"{color}- [{f.severity.upper()}] {f.message}{Style.RESET_ALL}")
        print(f"{Style.DIM}  -> {f.detail}{Style.RESET_ALL}")
        if f.regulations:
            print(f"{Fore.MAGENTA}  regulations: {', '.join(f.regulations)}{Style.RESET_ALL}")
        print(f"{Fore.YELLOW}  fix: {f.fix}{Style.RESET_ALL}\n")


# ----------------------- Funtion group_by_stride ----------------------------#
def group_by_stride(findings: Iterable[Finding]) -> Dict[str, List[Finding]]:
    groups: Dict[str, List[Finding]] = {name: [] for name in STRIDE_ORDER}
    for f in findings:
        groups.setdefault(threat_for(f.message)["stride"], []).append(f)
    return {k: v for k, v in groups.items() if v}


# ----------------------- Funtion print_threat_model ----------------------------#
def print_threat_model(findings: List[Finding]) -> None:
    print(f"\n{Style.BRIGHT}{Fore.BLUE}APIShield Threat Model Report{Style.RESET_ALL}\n")
    if not findings:
        print(f"{Fore.GREEN}No security threats identified!{Style.RESET_ALL}\n")
        return
    for stride, items in group_by_stride(findings).items():
        print(f"{Style.BRIGHT}{stride} ({len(items)}){Style.RESET_ALL}")
        for index, f in enumerate(items, 1):
            threat = threat_for(f.message)
            color = SEVERITY_COLORS.get(f.severity, "")
            print(f"{color}  {index}. {f.message}{Style.RESET_ALL}")
            print(f"     {f.detail}")
            print(f"{Style.DIM}     impact: {threat['impact']}{Style.RESET_ALL}")
            print(f"{Style.DIM}     owasp:  {threat['owasp']}{Style.RESET_ALL}")
        print()


# ----------------------- Funtion build_json_report ----------------------------#
def build_json_report(findings: List[Finding], target: str = "", source_kind: Optional[str] = None) -> Dict[str, Any]:
    items = []
    for f in findings:
        item = f.to_dict()
        item["threat"] = threat_for(f.message)
        items.append(item)
    return {
        "tool": "apishield",
        "version": __version__,
        "target": target,
        "source_kind": source_kind,
        "generated": datetime.now().isoformat(timespec="seconds"),
        "summary": summarize(findings),
        "findings": items,
    }


# ----------------------- Funtion save_json_report ----------------------------#
def save_json_report(findings: List[Finding], path: Union[str, Path], target: str = "", source_kind: Optional[str] = None) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(build_json_report(findings, target, source_kind), indent=2), encoding="utf-8")
    return out


class HTMLReportGenerator:
    def __init__(self, findings: List[Finding], base_url: str = "", **kwargs) -> None:
        self.findings = findings
        self.base_url = base_url or "-"
        self.timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

    def _generate_html_head(self) -> str:
        return """
        <head>
            <meta charset="UTF-8">
            <title>APIShield Security Report</title>
            <style>
                body { font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif; color: #333; max-width: 1100px; margin: 0 auto; padding: 20px; }
                table { border-collapse: collapse; }
                td, th { border: 1px solid #ddd; padding: 6px 12px; }
                .finding { border-left: 5px solid #999; padding: 8px 14px; margin-bottom: 18px; background: #fafafa; }
                .finding.high { border-color: #c0392b; }
                .finding.medium { border-color: #e67e22; }
                .meta { color: #666; font-size: 0.9em; }
            </style>
        </head>
        """

    def _generate_summary_table(self) -> str:
        counts = summarize(self.findings)["by_severity"]
        rows = "".join(f"<tr><td>{html.escape(sev.title())}</td><td>{n}</td></tr>" for sev, n in counts.items())
        return f'<div class="summary"><h2>Summary</h2><table><tr><th>Severity</th><th>Count</th></tr>{rows}</table></div>'

    def _generate_finding(self, f: Finding) -> str:
        threat = threat_for(f.message)
        regs = f"<p class=\"meta\">Regulations: {html.escape(', '.join(f.regulations))}</p>" if f.regulations else ""
        return f"""
        <div class="finding {html.escape(f.severity)}">
            <h3>{html.escape(f.message)}</h3>
            <p>{html.escape(f.detail)}</p>
            {regs}
            <p><strong>Fix:</strong> {html.escape(f.fix)}</p>
            <p class="meta">STRIDE: {html.escape(threat['stride'])} | OWASP: {html.escape(threat['owasp'])}</p>
        </div>
        """

    def generate_html(self) -> str:
        if self.findings:
            body = "".join(self._generate_finding(f) for f in self.findings)
        else:
            body = "<p>No security issues found.</p>"
        return f"""<!DOCTYPE html>
        <html>
        {self._generate_html_head()}
        <body>
            <h1>APIShield Security Report</h1>
            <p class="meta">Target: {html.escape(self.base_url)} | Generated: {html.escape(self.timestamp)} | v{html.escape(__version__)}</p>
            {self._generate_summary_table()}
            <div class="findings"><h2>Findings</h2>{body}</div>
        </body>
        </html>
        """

    def save(self, path: Union[str, Path]) -> Path:
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        with open(out, "w", encoding="utf-8") as f:
            f.write(self.generate_html())
        return out
