"""Per-tenant safelist rule reconciliation."""

from .models import RunSummary, SafelistRule, TenantOutcome, TenantResult
from .reconciler import RuleReconciler, plan_domains

__all__ = [
    "RuleReconciler",
    "RunSummary",
    "SafelistRule",
    "TenantOutcome",
    "TenantResult",
    "plan_domains",
]
