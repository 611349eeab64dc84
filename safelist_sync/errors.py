"""
Exception hierarchy for M365 Safelist Sync.

Run-fatal:     ConfigurationError, ValidationError, AuthenticationError
Tenant-scoped: TenantConnectionError, RemoteOperationError
"""

from __future__ import annotations


class SafelistSyncError(Exception):
    """Base class for all errors raised by the tool."""
    pass


class ConfigurationError(SafelistSyncError):
    """Missing/empty input or invalid configuration. Aborts the run."""
    pass


class ValidationError(ConfigurationError):
    """A safelist entry is not a syntactically valid domain name."""

    def __init__(self, value: str, row: int | None = None):
        self.value = value
        self.row = row
        where = f" (row {row})" if row is not None else ""
        super().__init__(f"Invalid domain '{value}'{where}")


class AuthenticationError(SafelistSyncError):
    """Partner-level credential rejected. Aborts the run."""
    pass


class TenantConnectionError(SafelistSyncError, ConnectionError):
    """Delegated session to a single customer tenant could not be opened."""

    def __init__(self, tenant: str, message: str):
        self.tenant = tenant
        super().__init__(f"Could not connect to {tenant}: {message}")


class RemoteOperationError(SafelistSyncError):
    """A transport rule lookup, create or update call failed."""

    def __init__(self, operation: str, message: str, status_code: int | None = None):
        self.operation = operation
        self.status_code = status_code
        super().__init__(f"{operation} failed: {message}")


class OperationTimeout(SafelistSyncError, TimeoutError):
    """A remote call did not finish before its deadline."""

    def __init__(self, what: str, seconds: float):
        self.what = what
        self.seconds = seconds
        super().__init__(f"{what} timed out after {seconds:.0f}s")
