"""
Domain list loader — reads the desired safelist from a CSV with a
``Domain`` column.
"""

from __future__ import annotations

import csv
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator

from .errors import ConfigurationError, ValidationError

logger = logging.getLogger("safelist_sync.domains")

DOMAIN_COLUMN = "domain"

_LABEL = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")


@dataclass(frozen=True)
class DesiredDomains:
    """Deduplicated, order-preserving set of safelisted sender domains."""
    domains: tuple[str, ...]

    @classmethod
    def from_values(cls, values: Iterable[str]) -> "DesiredDomains":
        seen: set[str] = set()
        ordered = []
        for value in values:
            domain = value.strip().lower()
            if domain and domain not in seen:
                seen.add(domain)
                ordered.append(domain)
        return cls(tuple(ordered))

    def missing_from(self, existing: Iterable[str]) -> list[str]:
        """Desired domains not present in `existing` (case-insensitive)."""
        have = {d.strip().lower() for d in existing}
        return [d for d in self.domains if d not in have]

    def __iter__(self) -> Iterator[str]:
        return iter(self.domains)

    def __len__(self) -> int:
        return len(self.domains)

    def __bool__(self) -> bool:
        return bool(self.domains)


def is_valid_domain(value: str) -> bool:
    """Standard hostname grammar: 2+ labels, LDH only, total length <= 253."""
    if not value or len(value) > 253:
        return False
    labels = value.rstrip(".").split(".")
    if len(labels) < 2:
        return False
    return all(_LABEL.match(label) for label in labels)


def load_domains(path: str | Path, validate: bool = False) -> DesiredDomains:
    """
    Load the safelist from `path`.

    Raises ConfigurationError when the file is missing, unreadable, has no
    Domain column, or yields no domains. With `validate`, the first entry
    that is not a plausible domain raises ValidationError.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Domain list not found: {path}")

    values: list[str] = []
    try:
        with open(path, "r", newline="", encoding="utf-8-sig") as fh:
            reader = csv.DictReader(fh)
            column = _find_domain_column(reader.fieldnames or [])
            if column is None:
                raise ConfigurationError(
                    f"Domain list {path} has no 'Domain' column "
                    f"(found: {', '.join(reader.fieldnames or []) or 'nothing'})"
                )
            # Row 1 is the header
            for row_number, row in enumerate(reader, start=2):
                value = (row.get(column) or "").strip()
                if not value:
                    continue
                if validate and not is_valid_domain(value.lower()):
                    raise ValidationError(value, row_number)
                values.append(value)
    except (OSError, UnicodeDecodeError, csv.Error) as e:
        raise ConfigurationError(f"Could not read domain list {path}: {e}")

    desired = DesiredDomains.from_values(values)
    if not desired:
        raise ConfigurationError(f"Domain list {path} contains no domains")

    logger.info(f"Loaded {len(desired)} safelisted domains from {path}")
    logger.debug(f"Safelist: {', '.join(desired)}")
    return desired


def _find_domain_column(fieldnames: list[str]) -> str | None:
    for name in fieldnames:
        if name and name.strip().lower() == DOMAIN_COLUMN:
            return name
    return None
