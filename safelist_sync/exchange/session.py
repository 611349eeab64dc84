"""
Tenant session factory — opens a delegated Exchange admin session per tenant.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

from ..auth.authenticator import Authenticator
from ..errors import OperationTimeout, TenantConnectionError
from ..retry import call_with_timeout
from ..safety.guardian import WriteGuardian
from .client import ExchangeAdminClient

logger = logging.getLogger("safelist_sync.exchange.session")


class ExchangeSessionFactory:
    """
    Callable used by the reconciler: ``async with factory(tenant) as session``.
    Token acquisition failures and timeouts surface as TenantConnectionError.
    """

    def __init__(
        self,
        authenticator: Authenticator,
        guardian: WriteGuardian,
        timeout: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.authenticator = authenticator
        self.guardian = guardian
        self.timeout = timeout
        self._transport = transport

    @asynccontextmanager
    async def open(self, tenant: str) -> AsyncIterator[ExchangeAdminClient]:
        try:
            token = await call_with_timeout(
                lambda: self.authenticator.acquire_tenant_token(tenant),
                self.timeout,
                f"Connecting to {tenant}",
            )
        except OperationTimeout as e:
            raise TenantConnectionError(tenant, str(e)) from e

        async with ExchangeAdminClient(
            tenant, token, self.guardian, transport=self._transport
        ) as session:
            logger.debug(f"[{tenant}] Exchange session opened.")
            yield session
        logger.debug(f"[{tenant}] Exchange session closed.")

    def __call__(self, tenant: str):
        return self.open(tenant)
