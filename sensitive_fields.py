########################################################
# APISHIELD - API Security Scanner                     #
# Licensed under AGPL-V3.0                             #
# Author: Perry Mertens pamsniffer@gmail.com (C) 2025  #
########################################################
"""Sensitive field catalogue and classifier.

A field is sensitive when its lowercased name *contains* one of the catalogue
patterns (substring match, so ``token_type`` matches ``token``). Each category
carries the regulations that apply to it; a field matching several categories
gets the union.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Tuple

__all__ = [
    "SENSITIVE_FIELDS",
    "ALL_SENSITIVE_FIELDS",
    "Classification",
    "classify",
    "is_sensitive_field",
    "regulations_for",
]

SENSITIVE_FIELDS: Dict[str, Dict[str, Tuple[str, ...]]] = {
    "credentials": {
        "fields": (
            "password", "passwd", "pwd", "secret", "token", "access_token",
            "refresh_token", "auth", "authorization", "bearer", "session",
            "sessionid", "session_id", "login", "userpass", "credentials",
            "api_key", "apikey", "client_secret", "client_id", "app_secret",
            "app_key",
        ),
        "regulations": ("SOX", "PCI-DSS"),
    },
    "encryption_keys": {
        "fields": (
            "encryptionkey", "encryption_key", "privatekey", "private_key",
            "publickey", "public_key", "ssh_key", "rsa_key", "gpg_key", "pem",
            "cert", "certificate", "keystore", "salt", "iv", "crypto_key",
            "signing_key", "keypair",
        ),
        "regulations": ("SOX", "FISMA"),
    },
    "financial": {
        "fields": (
            "creditcard", "credit_card", "card_number", "cc_number", "cvv",
            "cvc", "ccv", "expiration", "expiry_date", "billing_address",
            "iban", "swift", "routing_number", "account_number", "account_no",
            "bank_account", "bank_name", "transaction_id", "payment_info",
            "card_info", "upi_id", "wallet_id",
        ),
        "regulations": ("PCI-DSS", "SOX", "CCPA"),
    },
    "pii": {
        "fields": (
            "ssn", "social_security", "socialsecurity", "national_id", "nid",
            "passport", "passport_number", "driver_license", "license_number",
            "employee_id", "student_id", "tax_id", "tin", "voter_id",
            "citizen_id",
        ),
        "regulations": ("GDPR", "CCPA", "PIPEDA", "LGPD"),
    },
    "personal_info": {
        "fields": (
            "dob", "date_of_birth", "birthdate", "firstname", "lastname",
            "fullname", "name", "email", "phone", "phonenumber", "mobile",
            "address", "home_address", "zipcode", "zip", "postalcode", "state",
            "country", "city", "gender", "age",
        ),
        "regulations": ("GDPR", "CCPA", "PIPEDA", "LGPD"),
    },
    "health": {
        "fields": (
            "fingerprint", "retina", "iris", "dna", "medical_record",
            "health_id", "insurance_number", "insuranceid", "patient_id",
            "diagnosis", "treatment", "blood_type", "disability_status",
            "medication",
        ),
        "regulations": ("HIPAA", "GDPR", "CCPA"),
    },
    "system_tokens": {
        "fields": (
            "csrf_token", "xsrf_token", "otp", "2fa", "mfa", "recovery_code",
            "reset_token", "invite_code", "activation_key", "magic_link",
            "verification_code", "reset_code", "webauthn", "sso_token",
            "oidc_token", "fido2_key", "refresh_secret",
        ),
        "regulations": ("SOX",),
    },
    "cloud_secrets": {
        "fields": (
            "aws_secret_access_key", "aws_access_key_id", "azure_key",
            "gcp_key", "service_account", "firebase_key", "webhook_secret",
            "slack_webhook", "discord_token", "github_token", "gitlab_token",
            "npm_token", "docker_token", "heroku_api_key", "vercel_token",
            "netlify_token", "digitalocean_key", "ssh_config", "ci_secret",
            "ci_token",
        ),
        "regulations": ("SOX", "FISMA"),
    },
    "network": {
        "fields": (
            "ip", "ip_address", "mac", "mac_address", "hostname", "device_id",
            "device_token", "location", "geo", "latitude", "longitude",
            "tracking_id", "session_cookie", "cookie", "browser_fingerprint",
        ),
        "regulations": ("GDPR", "CCPA", "PIPEDA"),
    },
    "system_config": {
        "fields": (
            "debug", "stacktrace", "error_trace", "internal_note",
            "admin_comment", "system_path", "config_path", "logfile",
            "log_path", "env", "environment", "debug_mode", "debug_token",
            "stack", "traceback", "error_message", "error_details", "trace_id",
            "build_config",
        ),
        "regulations": ("SOX",),
    },
    "ai_integrations": {
        "fields": (
            "openai_key", "openai_api_key", "anthropic_key",
            "huggingface_token", "replicate_api_token", "cohere_api_key",
            "stability_key", "palm_api_key", "vertex_ai_key",
            "azure_openai_key",
        ),
        "regulations": ("SOX",),
    },
}

ALL_SENSITIVE_FIELDS: Tuple[str, ...] = tuple(
    pattern for category in SENSITIVE_FIELDS.values() for pattern in category["fields"]
)


@dataclass(frozen=True)
class Classification:
    is_sensitive: bool
    regulations: FrozenSet[str] = frozenset()
    categories: Tuple[str, ...] = ()


# ----------------------- Funtion _clean_patterns ----------------------------#
def _clean_patterns(patterns: Iterable[str]) -> List[str]:
    # an empty pattern would match every field name
    return [str(p).lower() for p in (patterns or ()) if p and str(p).strip()]


# ----------------------- Funtion classify ----------------------------#
def classify(field_name: str, extra_patterns: Iterable[str] = ()) -> Classification:
    """Classify one field name against the catalogue plus caller patterns.

    Caller patterns mark a field sensitive but carry no regulation tag.
    """
    lower = str(field_name or "").lower()
    if not lower:
        return Classification(False)

    categories: List[str] = []
    regulations: set[str] = set()
    for name, category in SENSITIVE_FIELDS.items():
        if any(pattern in lower for pattern in category["fields"]):
            categories.append(name)
            regulations.update(category["regulations"])

    custom_hit = any(pattern in lower for pattern in _clean_patterns(extra_patterns))
    if custom_hit:
        categories.append("custom")

    return Classification(
        is_sensitive=bool(categories),
        regulations=frozenset(regulations),
        categories=tuple(categories),
    )


# ----------------------- Funtion is_sensitive_field ----------------------------#
def is_sensitive_field(field_name: str, custom_fields: Iterable[str] = ()) -> bool:
    return classify(field_name, custom_fields).is_sensitive


# ----------------------- Funtion regulations_for ----------------------------#
def regulations_for(field_name: str) -> FrozenSet[str]:
    return classify(field_name).regulations
