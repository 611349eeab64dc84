"""
JSON exporter — Full record of one reconciliation run.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .. import __version__
from ..reconcile.models import RunSummary


def export_json(
    summary: RunSummary,
    output_dir: Path,
    run_id: str,
    rule_name: str,
    policy: str,
    desired: list[str],
    audit: Optional[dict] = None,
) -> Path:
    """
    Write run results to a JSON file.

    Returns:
        Path to the created JSON file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    payload = {
        "metadata": {
            "tool": "M365 Safelist Sync",
            "version": __version__,
            "run_id": run_id,
            "generated_utc": datetime.now(timezone.utc).isoformat(),
            "rule_name": rule_name,
            "merge_policy": policy,
            "desired_domains": desired,
        },
        "summary": summary.to_dict(),
        "tenants": [r.to_dict() for r in summary.results],
        "skipped": summary.skipped,
        "audit": audit or {},
    }

    filepath = output_dir / f"safelist_run_{run_id}.json"

    with open(filepath, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, default=str, ensure_ascii=False)

    return filepath
