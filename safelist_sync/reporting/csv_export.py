"""
CSV exporter — One row per tenant, for spreadsheets and ticket attachments.
"""

from __future__ import annotations

import csv
from pathlib import Path

from ..reconcile.models import RunSummary

TENANT_FIELDS = [
    "tenant", "outcome", "succeeded", "added", "domains",
    "error", "dry_run", "duration_seconds",
]


def export_csv(summary: RunSummary, output_dir: Path, run_id: str) -> Path:
    """
    Write per-tenant results, followed by skipped tenants, to CSV.

    Returns:
        Path to the created CSV file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    filepath = output_dir / f"safelist_run_{run_id}.csv"

    with open(filepath, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=TENANT_FIELDS)
        writer.writeheader()
        for r in summary.results:
            writer.writerow({
                "tenant": r.tenant,
                "outcome": r.outcome.value,
                "succeeded": r.succeeded,
                "added": "; ".join(r.added),
                "domains": "; ".join(r.domains),
                "error": r.error,
                "dry_run": r.dry_run,
                "duration_seconds": r.duration_seconds,
            })
        for s in summary.skipped:
            writer.writerow({
                "tenant": s.get("tenant", ""),
                "outcome": "skipped",
                "succeeded": "",
                "error": s.get("reason", ""),
            })

    return filepath
