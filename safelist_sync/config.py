"""
Configuration module for M365 Safelist Sync.
Defines API endpoints, retry tuning, the safelist rule definition and
run-level settings. One SyncConfig is built at startup and passed down.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from .errors import ConfigurationError


# ─── Partner Authentication ──────────────────────────────────────────────────

@dataclass
class CertificateAuth:
    """Certificate-based app-only authentication configuration."""
    tenant_id: str                 # Partner tenant ID or domain
    client_id: str
    certificate_path: str          # Path to base64-encoded PFX
    certificate_password: str = "" # Will be prompted if empty
    thumbprint: str = ""

@dataclass
class DelegatedAuth:
    """Delegated (device code) authentication for the partner identity."""
    tenant_id: str
    client_id: str
    username: str = ""             # Account hint for silent tenant tokens

@dataclass
class AuthConfig:
    """Authentication configuration — supports both modes."""
    mode: str = "delegated"  # "certificate" or "delegated"
    certificate: Optional[CertificateAuth] = None
    delegated: Optional[DelegatedAuth] = None


# ─── API Settings ────────────────────────────────────────────────────────────

LOGIN_AUTHORITY = "https://login.microsoftonline.com"

PARTNER_CENTER_BASE_URL = "https://api.partnercenter.microsoft.com/v1"
PARTNER_CENTER_SCOPES = ["https://api.partnercenter.microsoft.com/.default"]

EXCHANGE_ADMIN_BASE_URL = "https://outlook.office365.com/adminapi/beta"
EXCHANGE_SCOPES = ["https://outlook.office365.com/.default"]

# Rate limiting / throttling
MAX_CONCURRENT_REQUESTS = 4       # Parallel requests per API client
MAX_RETRIES = 4                   # Retry count for throttled requests
INITIAL_BACKOFF_SECONDS = 2.0
MAX_BACKOFF_SECONDS = 60.0
BACKOFF_MULTIPLIER = 2.0

# Pagination
CUSTOMER_PAGE_SIZE = 500
MAX_PAGES_PER_ENDPOINT = 1000


# ─── Run Defaults ────────────────────────────────────────────────────────────

DEFAULT_DOMAINS_FILE = "Safe Domains.csv"
DEFAULT_LOG_FILE = "safelist_sync.log"
DEFAULT_RULE_NAME = "Safelist - Authenticated Senders"
DEFAULT_TENANT_SUFFIX = ".onmicrosoft.com"
DEFAULT_WORKERS = 4
DEFAULT_TIMEOUT_SECONDS = 120.0
SIGN_IN_TIMEOUT_SECONDS = 300.0   # Device-code sign-in deadline

QUALIFYING_PRODUCTS = [
    "Exchange Online",
    "Microsoft 365",
    "Office 365",
]

MERGE_POLICIES = ("replace", "merge")


# ─── Rule Definition ────────────────────────────────────────────────────────

@dataclass
class RuleDefinition:
    """
    Static payload of the safelist transport rule.
    Messages from a listed sender domain that passed DMARC (or best-guess
    pass) get SCL -1 and a marker header. Everything else is untouched.
    """
    name: str = DEFAULT_RULE_NAME
    auth_header: str = "Authentication-Results"
    auth_patterns: list[str] = field(default_factory=lambda: [
        "dmarc=pass",
        "dmarc=bestguesspass",
    ])
    spam_confidence_level: int = -1
    marker_header: str = "X-Safelist-Sync"
    marker_value: str = "Authenticated safelisted sender"
    mode: str = "Enforce"
    enabled: bool = True

    def create_parameters(self, domains: list[str]) -> dict:
        """Parameters for New-TransportRule."""
        return {
            "Name": self.name,
            "SenderDomainIs": list(domains),
            "HeaderMatchesMessageHeader": self.auth_header,
            "HeaderMatchesPatterns": list(self.auth_patterns),
            "SetSCL": self.spam_confidence_level,
            "SetHeaderName": self.marker_header,
            "SetHeaderValue": self.marker_value,
            "Mode": self.mode,
            "Enabled": self.enabled,
        }

    def update_parameters(self, domains: list[str]) -> dict:
        """Parameters for Set-TransportRule."""
        return {
            "Identity": self.name,
            "SenderDomainIs": list(domains),
        }


# ─── Output Configuration ───────────────────────────────────────────────────

@dataclass
class OutputConfig:
    """Log file and optional run-report settings."""
    log_file: str = DEFAULT_LOG_FILE
    report_dir: str = ""
    run_id: str = ""

    def __post_init__(self):
        if not self.run_id:
            self.run_id = datetime.now().strftime("%Y%m%d_%H%M%S")

    @property
    def log_path(self) -> Path:
        return Path(self.log_file)

    @property
    def report_path(self) -> Optional[Path]:
        return Path(self.report_dir) if self.report_dir else None


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class SyncConfig:
    """Top-level configuration for one reconciliation run."""
    auth: AuthConfig = field(default_factory=AuthConfig)
    rule: RuleDefinition = field(default_factory=RuleDefinition)
    output: OutputConfig = field(default_factory=OutputConfig)
    domains_file: str = DEFAULT_DOMAINS_FILE
    validate_domains: bool = False
    merge_policy: str = "replace"
    qualifying_products: list[str] = field(
        default_factory=lambda: list(QUALIFYING_PRODUCTS)
    )
    tenant_suffix: str = DEFAULT_TENANT_SUFFIX
    exclude_domains: list[str] = field(default_factory=list)
    tenants: list[str] = field(default_factory=list)  # Explicit tenants skip enumeration
    workers: int = DEFAULT_WORKERS
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    dry_run: bool = False
    verbose: bool = False

    def validate(self) -> None:
        """Raise ConfigurationError for settings the run cannot use."""
        if self.merge_policy not in MERGE_POLICIES:
            raise ConfigurationError(
                f"Unknown merge policy '{self.merge_policy}' "
                f"(expected one of: {', '.join(MERGE_POLICIES)})"
            )
        if self.workers < 1:
            raise ConfigurationError("workers must be at least 1")
        if self.timeout_seconds <= 0:
            raise ConfigurationError("timeout must be greater than zero")
        if not self.rule.name.strip():
            raise ConfigurationError("Rule name must not be empty")
        if not self.tenant_suffix.startswith("."):
            self.tenant_suffix = "." + self.tenant_suffix

    @property
    def domains_path(self) -> Path:
        return Path(self.domains_file)

    @classmethod
    def from_file(cls, path: str | os.PathLike) -> "SyncConfig":
        """Load configuration from a JSON file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {path}")
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Could not read config file {path}: {e}")

        config = cls()
        if "auth" in data:
            auth_data = data["auth"]
            config.auth.mode = auth_data.get("mode", "delegated")
            try:
                if "certificate" in auth_data:
                    c = auth_data["certificate"]
                    config.auth.certificate = CertificateAuth(
                        tenant_id=c["tenant_id"],
                        client_id=c["client_id"],
                        certificate_path=c.get("certificate_path", "./base64.txt"),
                        certificate_password=c.get("certificate_password", ""),
                        thumbprint=c.get("thumbprint", ""),
                    )
                if "delegated" in auth_data:
                    d = auth_data["delegated"]
                    config.auth.delegated = DelegatedAuth(
                        tenant_id=d["tenant_id"],
                        client_id=d["client_id"],
                        username=d.get("username", ""),
                    )
            except KeyError as e:
                raise ConfigurationError(f"Missing auth setting in {path}: {e}")
        if "rule" in data:
            for k, v in data["rule"].items():
                if hasattr(config.rule, k):
                    setattr(config.rule, k, v)
        if "output" in data:
            for k, v in data["output"].items():
                if hasattr(config.output, k):
                    setattr(config.output, k, v)
        for key in (
            "domains_file", "validate_domains", "merge_policy",
            "qualifying_products", "tenant_suffix", "exclude_domains",
            "tenants", "workers", "timeout_seconds", "dry_run", "verbose",
        ):
            if key in data:
                setattr(config, key, data[key])
        return config

