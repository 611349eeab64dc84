"""
Tenant Directory Resolver
Lists the partner's customers and keeps the tenant domains of those holding
a qualifying mail/collaboration subscription.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from ..api.client import ApiError
from ..auth.authenticator import Authenticator
from ..config import SyncConfig
from ..errors import AuthenticationError, OperationTimeout, RemoteOperationError
from ..retry import call_with_timeout
from .client import PartnerCenterClient

logger = logging.getLogger("safelist_sync.partner.directory")

ClientFactory = Callable[[str], PartnerCenterClient]


@dataclass
class TenantRecord:
    """One customer tenant as seen by the partner directory."""
    customer_id: str
    domain: str
    company_name: str = ""
    has_qualifying_subscription: bool = False
    subscriptions: list[str] = field(default_factory=list)

    @classmethod
    def from_customer(cls, customer: dict) -> "TenantRecord":
        profile = customer.get("companyProfile") or {}
        return cls(
            customer_id=customer.get("id") or profile.get("tenantId", ""),
            domain=(profile.get("domain") or "").strip().lower(),
            company_name=profile.get("companyName", ""),
        )


def has_qualifying_subscription(subscriptions: Iterable[dict], patterns: Iterable[str]) -> bool:
    """
    True if any active subscription's offer or friendly name contains one of
    `patterns` (case-insensitive substring match).
    """
    needles = [p.upper() for p in patterns if p]
    for sub in subscriptions:
        if (sub.get("status") or "active").lower() != "active":
            continue
        names = " | ".join(
            str(sub.get(key) or "") for key in ("offerName", "friendlyName")
        ).upper()
        if any(needle in names for needle in needles):
            return True
    return False


def filter_tenant_domains(
    domains: Iterable[str],
    suffix: str,
    exclude: Iterable[str] = (),
) -> list[str]:
    """
    Keep only tenant identifiers ending in `suffix`, minus `exclude`.
    Lower-cases, drops duplicates and preserves order.
    """
    suffix = suffix.lower()
    excluded = {d.strip().lower() for d in exclude}
    kept: list[str] = []
    for raw in domains:
        domain = (raw or "").strip().lower()
        if not domain:
            continue
        if not domain.endswith(suffix) or domain == suffix.lstrip("."):
            logger.info(f"Excluding '{domain}': not a {suffix} tenant domain")
            continue
        if domain in excluded:
            logger.info(f"Excluding '{domain}': listed in exclude_domains")
            continue
        if domain not in kept:
            kept.append(domain)
    return kept


class TenantDirectoryResolver:
    """
    Resolves the list of tenant domains to reconcile.

    The partner session is opened and closed inside resolve(); it is never
    held while tenant sessions are open.
    """

    def __init__(
        self,
        authenticator: Authenticator,
        config: SyncConfig,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.authenticator = authenticator
        self.config = config
        self.client_factory = client_factory or PartnerCenterClient
        self.records: list[TenantRecord] = []
        self.skipped: list[dict[str, Any]] = []

    async def resolve(self) -> list[str]:
        """Return the ordered tenant domains to reconcile. May be empty."""
        self.records = []
        self.skipped = []
        timeout = self.config.timeout_seconds

        token = await self.authenticator.acquire_partner_token()

        async with self.client_factory(token) as client:
            try:
                customers = await call_with_timeout(
                    client.list_customers, timeout, "Listing partner customers"
                )
            except ApiError as e:
                if e.unauthorized:
                    raise AuthenticationError(
                        f"Partner Center rejected the partner credential: {e.message}"
                    ) from e
                raise RemoteOperationError("List customers", e.message, e.status_code) from e
            except OperationTimeout as e:
                raise RemoteOperationError("List customers", str(e)) from e

            logger.info(f"Partner has {len(customers)} customers. Checking subscriptions...")

            for customer in customers:
                record = TenantRecord.from_customer(customer)
                label = record.company_name or record.domain or record.customer_id

                if not record.customer_id or not record.domain:
                    self._skip(record, "customer has no id or domain")
                    logger.warning(f"Skipping customer '{label}': missing id or domain")
                    continue

                try:
                    subscriptions = await call_with_timeout(
                        lambda: client.list_subscriptions(record.customer_id),
                        timeout,
                        f"Subscriptions for {record.domain}",
                    )
                except (ApiError, OperationTimeout) as e:
                    self._skip(record, f"subscription query failed: {e}")
                    logger.error(f"Could not read subscriptions for {label}: {e}")
                    continue

                record.subscriptions = [
                    s.get("offerName") or s.get("friendlyName") or ""
                    for s in subscriptions
                ]
                record.has_qualifying_subscription = has_qualifying_subscription(
                    subscriptions, self.config.qualifying_products
                )
                self.records.append(record)

                if not record.has_qualifying_subscription:
                    self._skip(record, "no qualifying subscription")
                    logger.info(f"Skipping {label} ({record.domain}): no qualifying subscription")

        qualifying = [r.domain for r in self.records if r.has_qualifying_subscription]
        tenants = filter_tenant_domains(
            qualifying, self.config.tenant_suffix, self.config.exclude_domains
        )
        for domain in qualifying:
            if domain not in tenants:
                self.skipped.append({"tenant": domain, "reason": "filtered by domain suffix/exclusion"})

        if tenants:
            logger.info(f"{len(tenants)} qualifying tenant(s): {', '.join(tenants)}")
        else:
            logger.warning("No qualifying tenants found; nothing to reconcile.")
        return tenants

    def _skip(self, record: TenantRecord, reason: str):
        self.skipped.append({
            "tenant": record.domain or record.customer_id,
            "company": record.company_name,
            "reason": reason,
        })
