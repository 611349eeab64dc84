"""Partner Center access and tenant enumeration."""

from .client import PartnerCenterClient
from .directory import (
    TenantDirectoryResolver,
    TenantRecord,
    filter_tenant_domains,
    has_qualifying_subscription,
)

__all__ = [
    "PartnerCenterClient",
    "TenantDirectoryResolver",
    "TenantRecord",
    "filter_tenant_domains",
    "has_qualifying_subscription",
]
