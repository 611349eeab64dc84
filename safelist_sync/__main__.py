"""
M365 Safelist Sync — Main Orchestrator

Usage:
    python -m safelist_sync                              # default profile
    python -m safelist_sync --profile contoso-csp        # named profile
    python -m safelist_sync --config config.json         # JSON config file
    python -m safelist_sync --dry-run                    # read only, report planned changes
    python -m safelist_sync --tenant fabrikam.onmicrosoft.com

Profile management:
    python -m safelist_sync profile add <name> --tenant-id ... --client-id ...
    python -m safelist_sync profile list
    python -m safelist_sync profile remove <name>
    python -m safelist_sync profile set-default <name>

Exit codes: 0 success, 1 tenant failures, 2 configuration error,
3 authentication error.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from . import __version__
from .auth.authenticator import Authenticator
from .config import (
    AuthConfig,
    CertificateAuth,
    DelegatedAuth,
    DEFAULT_LOG_FILE,
    MERGE_POLICIES,
    SyncConfig,
)
from .domains import DesiredDomains, load_domains
from .errors import AuthenticationError, ConfigurationError, RemoteOperationError
from .exchange.session import ExchangeSessionFactory
from .logsetup import configure_logging, shutdown_logging
from .partner.directory import TenantDirectoryResolver, filter_tenant_domains
from .profiles import AUTH_MODES, PartnerProfile, ProfileStore, resolve_profile
from .reconcile import RuleReconciler, RunSummary, TenantOutcome
from .reporting import export_csv, export_json
from .safety.guardian import WriteGuardian

logger = logging.getLogger("safelist_sync")

EXIT_OK = 0
EXIT_TENANT_FAILURES = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_AUTHENTICATION_ERROR = 3


# ---------------------------------------------------------------------------
# Profile management sub-commands
# ---------------------------------------------------------------------------

def _cmd_profile(args: argparse.Namespace) -> int:
    """Handle `profile add|list|remove|set-default` sub-commands."""
    action = args.profile_action

    if action == "list":
        return _profile_list()
    elif action == "add":
        return _profile_add(args)
    elif action == "remove":
        return _profile_remove(args)
    elif action == "set-default":
        return _profile_set_default(args)
    print("Usage: python -m safelist_sync profile {add|list|remove|set-default}")
    return EXIT_OK


def _profile_list() -> int:
    store = ProfileStore.load()
    profiles = store.list_profiles()
    if not profiles:
        print("No profiles configured. Add one with:\n")
        print("  python -m safelist_sync profile add <name> \\")
        print("    --tenant-id <partner tenant> --client-id <GUID>")
        return EXIT_OK

    print(f"\n  {'Name':<20s} {'Partner Tenant':<38s} {'Client ID':<38s} {'Auth':<12s} {'Default'}")
    print(f"  {'─'*20} {'─'*38} {'─'*38} {'─'*12} {'─'*7}")
    for p in profiles:
        default_marker = "  ✓" if p.name == store.default_profile else ""
        name_col = p.name + (f" ({p.display_name})" if p.display_name else "")
        print(f"  {name_col:<20s} {p.tenant_id:<38s} {p.client_id:<38s} {p.auth_mode:<12s}{default_marker}")
    print()
    return EXIT_OK


def _profile_add(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    name = args.profile_name
    if store.get(name):
        print(f"  Profile '{name}' already exists. It will be overwritten.")

    profile = PartnerProfile(
        name=name,
        tenant_id=args.tenant_id,
        client_id=args.client_id,
        auth_mode=args.auth_mode,
        cert_path=args.cert_path or "./base64.txt",
        username=args.username or "",
        display_name=args.display_name or "",
        notes=args.notes or "",
    )
    set_as_default = args.set_default or not store.profiles
    store.add(profile, set_default=set_as_default)
    print(f"  ✅ Profile '{name}' saved.")
    if set_as_default:
        print("  ✅ Set as default profile.")
    return EXIT_OK


def _profile_remove(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.remove(args.profile_name):
        print(f"  ✅ Profile '{args.profile_name}' removed.")
        return EXIT_OK
    print(f"  ❌ Profile '{args.profile_name}' not found.")
    return EXIT_CONFIGURATION_ERROR


def _profile_set_default(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.set_default(args.profile_name):
        print(f"  ✅ Default profile set to '{args.profile_name}'.")
        return EXIT_OK
    print(f"  ❌ Profile '{args.profile_name}' not found.")
    return EXIT_CONFIGURATION_ERROR


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="safelist-sync",
        description="Sync the authenticated-sender safelist rule across partner customer tenants",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    # --- Sub-commands: profile management ---
    subparsers = parser.add_subparsers(dest="command", help="Management commands")

    prof_parser = subparsers.add_parser("profile", help="Manage partner profiles")
    prof_sub = prof_parser.add_subparsers(dest="profile_action", help="Profile actions")

    add_p = prof_sub.add_parser("add", help="Add or update a partner profile")
    add_p.add_argument("profile_name", help="Short name for the profile (e.g. 'contoso-csp')")
    add_p.add_argument("--tenant-id", required=True, help="Partner tenant ID or primary domain")
    add_p.add_argument("--client-id", required=True, help="App registration client ID (GUID)")
    add_p.add_argument("--auth-mode", choices=AUTH_MODES, default="delegated", help="Sign-in method (default: delegated)")
    add_p.add_argument("--cert-path", default="./base64.txt", help="Path to base64-encoded PFX (certificate mode)")
    add_p.add_argument("--username", help="Partner admin UPN (delegated mode)")
    add_p.add_argument("--display-name", help="Friendly partner name")
    add_p.add_argument("--notes", help="Optional admin notes")
    add_p.add_argument("--set-default", action="store_true", help="Set as default profile")

    prof_sub.add_parser("list", help="List all configured profiles")

    rm_p = prof_sub.add_parser("remove", help="Remove a profile")
    rm_p.add_argument("profile_name", help="Name of the profile to remove")

    sd_p = prof_sub.add_parser("set-default", help="Set the default profile")
    sd_p.add_argument("profile_name", help="Name of the profile to set as default")

    # --- Credentials ---
    parser.add_argument("--profile", "-p", default=None, help="Partner profile name (run 'profile list' to see available)")
    parser.add_argument("--config", "-c", type=Path, help="Path to JSON configuration file")
    parser.add_argument("--auth-mode", choices=AUTH_MODES, default=None, help="Override the sign-in method")
    parser.add_argument("--delegated", action="store_true", help="Shorthand for --auth-mode delegated")
    parser.add_argument("--tenant-id", default=None, help="Partner tenant (overrides profile; use with --client-id)")
    parser.add_argument("--client-id", default=None, help="Client ID (overrides profile; use with --tenant-id)")
    parser.add_argument("--cert-path", type=Path, help="Path to base64-encoded certificate file (overrides profile)")
    parser.add_argument("--username", default=None, help="Partner admin UPN hint for delegated sign-in")

    # --- Run options ---
    parser.add_argument("--domains", "-d", default=None, help="CSV with a 'Domain' column (default: 'Safe Domains.csv')")
    parser.add_argument("--validate-domains", action="store_true", help="Reject entries that are not valid domain names")
    parser.add_argument("--log-file", default=None, help=f"Append-only log file (default: {DEFAULT_LOG_FILE})")
    parser.add_argument("--rule-name", default=None, help="Name of the transport rule to maintain")
    parser.add_argument("--policy", choices=MERGE_POLICIES, default=None,
                        help="replace: rule lists exactly the CSV domains; merge: keep existing entries too")
    parser.add_argument("--tenant", "-t", action="append", default=None, dest="tenants",
                        help="Reconcile only this tenant domain (repeatable); skips partner enumeration")
    parser.add_argument("--exclude-domain", action="append", default=None, dest="exclude_domains",
                        help="Tenant domain to leave untouched (repeatable)")
    parser.add_argument("--tenant-suffix", default=None, help="Tenant domain suffix (default: .onmicrosoft.com)")
    parser.add_argument("--workers", "-w", type=int, default=None, help="Tenants reconciled concurrently (default: 4)")
    parser.add_argument("--timeout", type=float, default=None, help="Seconds allowed per remote call (default: 120)")
    parser.add_argument("--dry-run", action="store_true", help="Read rules but do not create or change them")
    parser.add_argument("--report-dir", "-o", default=None, help="Write JSON and CSV run reports to this directory")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> SyncConfig:
    """Build run configuration from config file, profile and CLI args."""
    config = SyncConfig.from_file(args.config) if args.config else SyncConfig()

    # --- Resolve partner identity from profile, CLI flags or config file ---
    profile = None
    if args.profile:
        profile = resolve_profile(args.profile)
        if not profile:
            raise ConfigurationError(
                f"Profile '{args.profile}' not found. Use 'profile list' to see available profiles."
            )
    elif not args.config and not args.tenant_id:
        profile = resolve_profile()

    mode = args.auth_mode or ("delegated" if args.delegated else None)
    mode = mode or (profile.auth_mode if profile else config.auth.mode)

    if profile:
        tenant_id = args.tenant_id or profile.tenant_id
        client_id = args.client_id or profile.client_id
        cert_path = str(args.cert_path) if args.cert_path else profile.resolve_cert_path()
        username = args.username or profile.username
    elif args.tenant_id and args.client_id:
        tenant_id = args.tenant_id
        client_id = args.client_id
        cert_path = str(args.cert_path) if args.cert_path else "./base64.txt"
        username = args.username or ""
    elif mode == "certificate" and config.auth.certificate:
        tenant_id = config.auth.certificate.tenant_id
        client_id = config.auth.certificate.client_id
        cert_path = str(args.cert_path) if args.cert_path else config.auth.certificate.certificate_path
        username = ""
    elif mode == "delegated" and config.auth.delegated:
        tenant_id = config.auth.delegated.tenant_id
        client_id = config.auth.delegated.client_id
        cert_path = ""
        username = args.username or config.auth.delegated.username
    else:
        raise ConfigurationError(
            "No partner credentials found. Use one of: "
            "--profile <name> (saved profile), "
            "--tenant-id X --client-id Y (ad-hoc), "
            "--config config.json (JSON config file). "
            "To create a profile: python -m safelist_sync profile add <name> "
            "--tenant-id <partner tenant> --client-id <GUID>"
        )

    auth = AuthConfig(mode=mode)
    if mode == "certificate":
        password = config.auth.certificate.certificate_password if config.auth.certificate else ""
        auth.certificate = CertificateAuth(
            tenant_id=tenant_id,
            client_id=client_id,
            certificate_path=cert_path,
            certificate_password=password,
        )
    else:
        auth.delegated = DelegatedAuth(tenant_id=tenant_id, client_id=client_id, username=username)
    config.auth = auth

    # --- Run overrides ---
    if args.domains:
        config.domains_file = args.domains
    if args.validate_domains:
        config.validate_domains = True
    if args.log_file:
        config.output.log_file = args.log_file
    if args.report_dir:
        config.output.report_dir = args.report_dir
    if args.rule_name:
        config.rule.name = args.rule_name
    if args.policy:
        config.merge_policy = args.policy
    if args.tenants:
        config.tenants = args.tenants
    if args.exclude_domains:
        config.exclude_domains = list(config.exclude_domains) + args.exclude_domains
    if args.tenant_suffix:
        config.tenant_suffix = args.tenant_suffix
    if args.workers is not None:
        config.workers = args.workers
    if args.timeout is not None:
        config.timeout_seconds = args.timeout
    if args.dry_run:
        config.dry_run = True
    if args.verbose:
        config.verbose = True

    config.validate()
    return config


async def run_sync(
    config: SyncConfig,
    desired: DesiredDomains,
    authenticator: Authenticator,
    guardian: WriteGuardian,
    resolver: Optional[TenantDirectoryResolver] = None,
    session_factory=None,
) -> RunSummary:
    """
    Resolve tenants, then reconcile each one.

    Raises AuthenticationError / ConfigurationError for run-fatal problems
    and RemoteOperationError when the customer list cannot be read.
    """
    skipped: list[dict] = []

    if config.tenants:
        logger.info("Using tenants given on the command line; skipping partner enumeration.")
        await authenticator.acquire_partner_token()
        tenants = filter_tenant_domains(
            config.tenants, config.tenant_suffix, config.exclude_domains
        )
        skipped = [
            {"tenant": t, "reason": "filtered by domain suffix/exclusion"}
            for t in config.tenants
            if t.strip().lower() not in tenants
        ]
    else:
        resolver = resolver or TenantDirectoryResolver(authenticator, config)
        tenants = await resolver.resolve()
        skipped = list(resolver.skipped)

    if not tenants:
        logger.warning("No qualifying tenants; no rules were checked.")
        return RunSummary(results=[], skipped=skipped)

    session_factory = session_factory or ExchangeSessionFactory(
        authenticator, guardian, config.timeout_seconds
    )
    reconciler = RuleReconciler(
        session_factory=session_factory,
        desired=desired,
        definition=config.rule,
        policy=config.merge_policy,
        timeout=config.timeout_seconds,
        dry_run=config.dry_run,
    )
    results = await reconciler.reconcile_all(tenants, workers=config.workers)
    return RunSummary(results=results, skipped=skipped)


def log_summary(summary: RunSummary) -> None:
    """Log per-outcome counts and every failed tenant."""
    counts = summary.to_dict()
    logger.info(
        f"Run complete: {counts['tenants_processed']} tenant(s) processed, "
        f"{counts['succeeded']} succeeded, {counts['failed']} failed, "
        f"{counts['skipped']} skipped."
    )
    for outcome in TenantOutcome:
        n = summary.count(outcome)
        if n:
            logger.info(f"  {outcome.value:<15s} {n}")
    for r in summary.failed:
        logger.error(f"  {r.tenant}: {r.outcome.value}: {r.error}")


def write_reports(
    summary: RunSummary,
    config: SyncConfig,
    desired: DesiredDomains,
    guardian: WriteGuardian,
) -> list[Path]:
    output_dir = config.output.report_path
    if not output_dir:
        return []
    run_id = config.output.run_id
    created = [
        export_json(
            summary, output_dir, run_id,
            rule_name=config.rule.name,
            policy=config.merge_policy,
            desired=list(desired),
            audit=guardian.get_audit_record(),
        ),
        export_csv(summary, output_dir, run_id),
    ]
    for path in created:
        logger.info(f"Report written: {path}")
    return created


async def main_async(argv: Optional[Sequence[str]] = None) -> int:
    """Async entry point. Returns the process exit code."""
    args = parse_args(argv)

    # --- Handle profile management sub-commands ---
    if getattr(args, "command", None) == "profile":
        return _cmd_profile(args)

    config_error = None
    try:
        config = build_config(args)
        log_file = config.output.log_path
        verbose = config.verbose
    except ConfigurationError as e:
        config_error = e
        log_file = args.log_file or DEFAULT_LOG_FILE
        verbose = args.verbose

    configure_logging(log_file, verbose)
    try:
        if config_error:
            logger.error(f"Configuration error: {config_error}")
            return EXIT_CONFIGURATION_ERROR
        return await _run(config)
    finally:
        shutdown_logging()


async def _run(config: SyncConfig) -> int:
    guardian = WriteGuardian(dry_run=config.dry_run)
    guardian.print_banner()

    print("=" * 70)
    print(f" M365 Safelist Sync v{__version__}")
    print(f" Rule: {config.rule.name}   Policy: {config.merge_policy}")
    print("=" * 70)

    # --- Desired domains (before any remote call) ---
    try:
        desired = load_domains(config.domains_path, validate=config.validate_domains)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIGURATION_ERROR

    authenticator = Authenticator(config.auth)

    print("\n" + "=" * 70)
    print(" TENANT RECONCILIATION")
    print("=" * 70)
    try:
        summary = await run_sync(config, desired, authenticator, guardian)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIGURATION_ERROR
    except AuthenticationError as e:
        logger.error(f"Authentication failed: {e}")
        return EXIT_AUTHENTICATION_ERROR
    except RemoteOperationError as e:
        logger.error(f"Could not enumerate customer tenants: {e}")
        return EXIT_TENANT_FAILURES

    print("\n" + "=" * 70)
    print(" SUMMARY")
    print("=" * 70)
    log_summary(summary)
    write_reports(summary, config, desired, guardian)

    return EXIT_TENANT_FAILURES if summary.has_failures else EXIT_OK


def main(argv: Optional[Sequence[str]] = None):
    """Synchronous entry point for `python -m safelist_sync` and `safelist-sync`."""
    sys.exit(asyncio.run(main_async(argv)))


if __name__ == "__main__":
    main()
