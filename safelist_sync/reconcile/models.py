"""
Reconciliation data models — rule snapshot, per-tenant result, run summary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class SafelistRule:
    """Snapshot of the remote transport rule as last read."""
    name: str
    existing_domains: tuple[str, ...] = ()
    exists: bool = False

    @classmethod
    def absent(cls, name: str) -> "SafelistRule":
        return cls(name=name, existing_domains=(), exists=False)


class TenantOutcome(str, Enum):
    """Terminal state of one tenant pass."""
    NOOP = "noop"
    UPDATED = "updated"
    CREATED = "created"
    CONNECT_FAILED = "connect_failed"
    LOOKUP_FAILED = "lookup_failed"
    CREATE_FAILED = "create_failed"
    UPDATE_FAILED = "update_failed"

    @property
    def succeeded(self) -> bool:
        return self in (TenantOutcome.NOOP, TenantOutcome.UPDATED, TenantOutcome.CREATED)


@dataclass
class TenantResult:
    """Outcome of reconciling one tenant."""
    tenant: str
    outcome: TenantOutcome = TenantOutcome.CONNECT_FAILED
    domains: list[str] = field(default_factory=list)   # Domain list written (or already present)
    added: list[str] = field(default_factory=list)
    error: str = ""
    dry_run: bool = False
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.outcome.succeeded

    def to_dict(self) -> dict:
        return {
            "tenant": self.tenant,
            "outcome": self.outcome.value,
            "succeeded": self.succeeded,
            "domains": self.domains,
            "added": self.added,
            "error": self.error,
            "dry_run": self.dry_run,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class RunSummary:
    """Results of one reconciliation run."""
    results: list[TenantResult] = field(default_factory=list)
    skipped: list[dict] = field(default_factory=list)   # Tenants excluded before reconciliation

    @property
    def succeeded(self) -> list[TenantResult]:
        return [r for r in self.results if r.succeeded]

    @property
    def failed(self) -> list[TenantResult]:
        return [r for r in self.results if not r.succeeded]

    def count(self, outcome: TenantOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)

    def to_dict(self) -> dict:
        return {
            "tenants_processed": len(self.results),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
            "outcomes": {o.value: self.count(o) for o in TenantOutcome},
        }
