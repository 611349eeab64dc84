"""
Exchange Online admin REST client — transport rule cmdlets over InvokeCommand.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..api.client import ApiClient, ApiError
from ..config import EXCHANGE_ADMIN_BASE_URL, RuleDefinition
from ..errors import RemoteOperationError
from ..reconcile.models import SafelistRule
from ..safety.guardian import WriteGuardian

logger = logging.getLogger("safelist_sync.exchange")

# Well-known system mailbox used to route admin API calls to the tenant
ANCHOR_MAILBOX = "SystemMailbox{bb558c35-97f1-4cb9-8ff7-d53741dc928c}"

NOT_FOUND_MARKERS = (
    "ManagementObjectNotFoundException",
    "couldn't be found",
    "could not be found",
)


def is_not_found(error: ApiError) -> bool:
    """True only when the API explicitly reports the object as missing."""
    if error.not_found:
        return True
    text = f"{error.message} {error.body or ''}"
    return any(marker.lower() in text.lower() for marker in NOT_FOUND_MARKERS)


class ExchangeAdminClient(ApiClient):
    """Runs transport-rule cmdlets against one customer tenant."""

    def __init__(
        self,
        tenant: str,
        access_token: str,
        guardian: WriteGuardian,
        base_url: str = EXCHANGE_ADMIN_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ):
        super().__init__(
            f"{base_url.rstrip('/')}/{tenant}",
            access_token,
            headers={"X-AnchorMailbox": f"UPN:{ANCHOR_MAILBOX}@{tenant}"},
            transport=transport,
            **kwargs,
        )
        self.tenant = tenant
        self.guardian = guardian

    async def invoke(self, cmdlet: str, parameters: dict) -> Optional[list[dict]]:
        """
        Run a cmdlet. Returns its output objects, or None when the guardian
        intercepted a write (dry run).
        """
        if not self.guardian.should_send(self.tenant, cmdlet, parameters):
            return None
        body = {"CmdletInput": {"CmdletName": cmdlet, "Parameters": parameters}}
        data = await self.post("InvokeCommand", json_body=body)
        value = data.get("value", [])
        return value if isinstance(value, list) else [value]

    async def get_rule(self, name: str) -> SafelistRule:
        """Read the named rule; an explicit not-found yields an absent snapshot."""
        try:
            objects = await self.invoke("Get-TransportRule", {"Identity": name})
        except ApiError as e:
            if is_not_found(e):
                logger.debug(f"[{self.tenant}] Get-TransportRule: '{name}' not found")
                return SafelistRule.absent(name)
            raise RemoteOperationError("Get-TransportRule", e.message, e.status_code) from e

        if not objects:
            return SafelistRule.absent(name)
        domains = objects[0].get("SenderDomainIs") or []
        if isinstance(domains, str):
            domains = [domains]
        return SafelistRule(name=name, existing_domains=tuple(domains), exists=True)

    async def create_rule(self, definition: RuleDefinition, domains: list[str]) -> None:
        await self._write("New-TransportRule", definition.create_parameters(domains))

    async def update_rule(self, definition: RuleDefinition, domains: list[str]) -> None:
        await self._write("Set-TransportRule", definition.update_parameters(domains))

    async def _write(self, cmdlet: str, parameters: dict) -> None:
        try:
            await self.invoke(cmdlet, parameters)
        except ApiError as e:
            raise RemoteOperationError(cmdlet, e.message, e.status_code) from e
