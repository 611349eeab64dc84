"""Cmdlet allow-list and dry-run interception."""

from .guardian import WriteGuardian, WriteBlocked

__all__ = ["WriteGuardian", "WriteBlocked"]
