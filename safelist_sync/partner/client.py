"""
Partner Center REST client — customers and their subscriptions.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

import httpx

from ..api.client import ApiClient
from ..config import CUSTOMER_PAGE_SIZE, MAX_PAGES_PER_ENDPOINT, PARTNER_CENTER_BASE_URL

logger = logging.getLogger("safelist_sync.partner")


class PartnerCenterClient(ApiClient):
    """Partner Center v1 API, scoped to the signed-in partner."""

    def __init__(
        self,
        access_token: str,
        base_url: str = PARTNER_CENTER_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ):
        super().__init__(
            base_url,
            access_token,
            headers={"MS-CorrelationId": str(uuid.uuid4())},
            transport=transport,
            **kwargs,
        )

    async def list_customers(self) -> list[dict]:
        """All customers of the partner, following continuation links."""
        customers: list[dict] = []
        endpoint: Optional[str] = f"customers?size={CUSTOMER_PAGE_SIZE}"
        headers: Optional[dict] = None
        pages = 0

        while endpoint and pages < MAX_PAGES_PER_ENDPOINT:
            data = await self.get(endpoint, headers=headers)
            customers.extend(data.get("items", []))
            pages += 1
            endpoint, headers = self._next_page(data)

        if pages >= MAX_PAGES_PER_ENDPOINT:
            logger.warning(
                f"Pagination safety cap reached ({MAX_PAGES_PER_ENDPOINT} pages) for customers"
            )
        logger.debug(f"Partner Center returned {len(customers)} customers in {pages} page(s)")
        return customers

    async def list_subscriptions(self, customer_id: str) -> list[dict]:
        """Subscriptions held by one customer."""
        data = await self.get(f"customers/{customer_id}/subscriptions")
        return data.get("items", [])

    def _next_page(self, data: dict) -> tuple[Optional[str], Optional[dict]]:
        """Return (endpoint, headers) for the next page, or (None, None)."""
        link = (data.get("links") or {}).get("next")
        if not link or not link.get("uri"):
            return None, None

        uri = link["uri"]
        # Links are root-relative ("/v1/customers?..."); base_url already ends in /v1
        if uri.startswith("/v1/"):
            uri = uri[len("/v1/"):]
        headers = {
            h["key"]: h["value"]
            for h in link.get("headers", [])
            if h.get("key") and h.get("value") is not None
        }
        return uri, headers or None
