"""
Write Guardian — Restricts which Exchange cmdlets the tool may run.
Only the transport-rule cmdlets are allowed; in dry-run mode the write
cmdlets are recorded and not sent.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("safelist_sync.safety")

# ─── Cmdlet allow-list ───────────────────────────────────────────────────────

READ_CMDLETS = {"Get-TransportRule"}
WRITE_CMDLETS = {"New-TransportRule", "Set-TransportRule"}


class WriteBlocked(Exception):
    """Raised when a cmdlet outside the allow-list is attempted."""
    pass


class WriteGuardian:
    """
    Validates every cmdlet before it reaches a tenant.
    Maintains an audit record of writes sent, writes intercepted by dry-run,
    and blocked attempts.
    """

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run
        self.checks_performed: int = 0
        self.writes_sent: list[dict] = []
        self.writes_planned: list[dict] = []
        self.violations: list[dict] = []
        self.started_at: str = _utcnow()

    def should_send(self, tenant: str, cmdlet: str, parameters: Optional[dict] = None) -> bool:
        """
        Return True if the cmdlet may be sent to the tenant.
        Returns False for writes intercepted by dry-run.
        Raises WriteBlocked for anything outside the allow-list.
        """
        self.checks_performed += 1

        if cmdlet in READ_CMDLETS:
            return True

        if cmdlet not in WRITE_CMDLETS:
            self._record_violation(tenant, cmdlet)
            raise WriteBlocked(f"Cmdlet not permitted: {cmdlet} on {tenant}")

        entry = {
            "timestamp": _utcnow(),
            "tenant": tenant,
            "cmdlet": cmdlet,
            "parameters": parameters or {},
        }
        if self.dry_run:
            self.writes_planned.append(entry)
            logger.info(f"[{tenant}] [DRY-RUN] Would run {cmdlet} {parameters or {}}")
            return False

        self.writes_sent.append(entry)
        return True

    def _record_violation(self, tenant: str, cmdlet: str):
        violation = {
            "timestamp": _utcnow(),
            "tenant": tenant,
            "cmdlet": cmdlet,
            "reason": "Cmdlet outside transport-rule allow-list",
        }
        self.violations.append(violation)
        logger.critical(f"[{tenant}] Blocked cmdlet: {cmdlet}")

    def get_audit_record(self) -> dict:
        """Return the full write audit record."""
        return {
            "write_guardian": {
                "mode": "DRY-RUN" if self.dry_run else "ENFORCE",
                "started_at": self.started_at,
                "checks_performed": self.checks_performed,
                "writes_sent": self.writes_sent,
                "writes_planned": self.writes_planned,
                "violations_detected": len(self.violations),
                "violations": self.violations,
            }
        }

    def print_banner(self):
        """Print the dry-run notice."""
        if not self.dry_run:
            return
        print("=" * 70)
        print("  DRY RUN -- transport rules will be read but NOT created or changed")
        print("=" * 70)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()
