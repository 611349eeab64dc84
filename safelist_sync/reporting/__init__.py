"""Reporting package — run summaries in JSON and CSV."""

from .json_export import export_json
from .csv_export import export_csv

__all__ = [
    "export_json",
    "export_csv",
]
