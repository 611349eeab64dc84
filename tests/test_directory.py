"""Tests for partner tenant enumeration and filtering."""

import asyncio

import httpx
import pytest

from safelist_sync.config import SyncConfig
from safelist_sync.errors import AuthenticationError, RemoteOperationError
from safelist_sync.partner import (
    PartnerCenterClient,
    TenantDirectoryResolver,
    filter_tenant_domains,
    has_qualifying_subscription,
)

from .fakes import FakeAuthenticator

PATTERNS = ["Exchange Online", "Microsoft 365"]


# --- has_qualifying_subscription ---

@pytest.mark.parametrize("subs,expected", [
    ([{"offerName": "Microsoft 365 Business Premium", "status": "active"}], True),
    ([{"offerName": "Exchange Online (Plan 1)", "status": "active"}], True),
    ([{"friendlyName": "exchange online kiosk", "status": "active"}], True),
    ([{"offerName": "Azure plan", "status": "active"}], False),
    ([{"offerName": "Microsoft 365 E3", "status": "suspended"}], False),
    ([{"offerName": "Power BI Pro", "status": "active"},
      {"offerName": "Microsoft 365 E5", "status": "active"}], True),
    ([], False),
])
def test_has_qualifying_subscription(subs, expected):
    assert has_qualifying_subscription(subs, PATTERNS) is expected


def test_qualification_ignores_other_customer_attributes():
    subs = [{"offerName": "Dynamics 365 Sales", "status": "active",
             "id": "x", "quantity": 500, "billingCycle": "monthly"}]

    assert has_qualifying_subscription(subs, PATTERNS) is False


# --- filter_tenant_domains ---

def test_filter_keeps_only_tenant_suffix():
    domains = [
        "contoso.onmicrosoft.com",
        "partner.com",
        "Fabrikam.OnMicrosoft.com",
        "onmicrosoft.com",
        "evil.onmicrosoft.com.attacker.net",
    ]

    assert filter_tenant_domains(domains, ".onmicrosoft.com") == [
        "contoso.onmicrosoft.com",
        "fabrikam.onmicrosoft.com",
    ]


def test_filter_drops_excluded_and_duplicates():
    domains = ["a.onmicrosoft.com", "partnerco.onmicrosoft.com", "a.onmicrosoft.com", ""]

    result = filter_tenant_domains(
        domains, ".onmicrosoft.com", exclude=["PartnerCo.onmicrosoft.com"]
    )

    assert result == ["a.onmicrosoft.com"]


# --- TenantDirectoryResolver against a mocked Partner Center ---

CUSTOMERS_PAGE_1 = {
    "items": [
        {"id": "c1", "companyProfile": {"domain": "contoso.onmicrosoft.com", "companyName": "Contoso"}},
        {"id": "c2", "companyProfile": {"domain": "azureonly.onmicrosoft.com", "companyName": "AzureOnly"}},
    ],
    "links": {
        "next": {
            "uri": "/v1/customers?size=500",
            "method": "GET",
            "headers": [{"key": "MS-ContinuationToken", "value": "page-2"}],
        }
    },
}
CUSTOMERS_PAGE_2 = {
    "items": [
        {"id": "c3", "companyProfile": {"domain": "broken.onmicrosoft.com", "companyName": "Broken"}},
        {"id": "c4", "companyProfile": {"domain": "fabrikam.onmicrosoft.com", "companyName": "Fabrikam"}},
        {"id": "c5", "companyProfile": {"domain": "vanity.com", "companyName": "Vanity"}},
    ],
}
SUBSCRIPTIONS = {
    "c1": [{"offerName": "Microsoft 365 Business Standard", "status": "active"}],
    "c2": [{"offerName": "Azure plan", "status": "active"}],
    "c4": [{"offerName": "Exchange Online (Plan 2)", "status": "active"}],
    "c5": [{"offerName": "Exchange Online (Plan 1)", "status": "active"}],
}


def partner_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/v1/customers":
        if request.headers.get("MS-ContinuationToken") == "page-2":
            return httpx.Response(200, json=CUSTOMERS_PAGE_2)
        return httpx.Response(200, json=CUSTOMERS_PAGE_1)
    if path.endswith("/subscriptions"):
        customer_id = path.split("/")[3]
        if customer_id == "c3":
            return httpx.Response(500, json={"description": "Backend unavailable"})
        return httpx.Response(200, json={"items": SUBSCRIPTIONS[customer_id]})
    return httpx.Response(404)


class ClientRecorder:
    def __init__(self, handler):
        self.handler = handler
        self.clients = []

    def __call__(self, token):
        client = PartnerCenterClient(
            token,
            transport=httpx.MockTransport(self.handler),
            max_retries=0,
            initial_backoff=0,
        )
        self.clients.append(client)
        return client


def make_resolver(handler=partner_handler, authenticator=None, **config_overrides):
    config = SyncConfig(**config_overrides)
    recorder = ClientRecorder(handler)
    resolver = TenantDirectoryResolver(
        authenticator or FakeAuthenticator(), config, client_factory=recorder
    )
    return resolver, recorder


def test_resolver_returns_qualifying_tenant_domains():
    resolver, recorder = make_resolver()

    tenants = asyncio.run(resolver.resolve())

    assert tenants == ["contoso.onmicrosoft.com", "fabrikam.onmicrosoft.com"]
    assert recorder.clients[0]._client is None  # partner session closed


def test_resolver_records_skips_with_reasons():
    resolver, _ = make_resolver()

    asyncio.run(resolver.resolve())

    reasons = {s["tenant"]: s["reason"] for s in resolver.skipped}
    assert reasons["azureonly.onmicrosoft.com"] == "no qualifying subscription"
    assert reasons["broken.onmicrosoft.com"].startswith("subscription query failed")
    assert reasons["vanity.com"] == "filtered by domain suffix/exclusion"


def test_resolver_honours_exclude_domains():
    resolver, _ = make_resolver(exclude_domains=["contoso.onmicrosoft.com"])

    assert asyncio.run(resolver.resolve()) == ["fabrikam.onmicrosoft.com"]


def test_resolver_empty_directory_is_not_an_error():
    def handler(request):
        return httpx.Response(200, json={"items": []})

    resolver, _ = make_resolver(handler)

    assert asyncio.run(resolver.resolve()) == []


def test_rejected_partner_credential_is_fatal():
    def handler(request):
        return httpx.Response(401, json={"error": {"code": "Unauthorized", "message": "Token expired"}})

    resolver, recorder = make_resolver(handler)

    with pytest.raises(AuthenticationError, match="Token expired"):
        asyncio.run(resolver.resolve())
    assert recorder.clients[0]._client is None


def test_partner_sign_in_failure_propagates():
    authenticator = FakeAuthenticator(fail_partner=AuthenticationError("AADSTS70000"))
    resolver, recorder = make_resolver(authenticator=authenticator)

    with pytest.raises(AuthenticationError):
        asyncio.run(resolver.resolve())
    assert recorder.clients == []


def test_customer_listing_server_error_is_remote_error():
    def handler(request):
        return httpx.Response(500, json={"description": "Internal error"})

    resolver, _ = make_resolver(handler)

    with pytest.raises(RemoteOperationError, match="Internal error"):
        asyncio.run(resolver.resolve())


def test_network_error_for_one_customer_does_not_stop_enumeration():
    def handler(request):
        if request.url.path == "/v1/customers/c1/subscriptions":
            raise httpx.ConnectError("connection reset", request=request)
        return partner_handler(request)

    resolver, _ = make_resolver(handler)

    tenants = asyncio.run(resolver.resolve())

    assert tenants == ["fabrikam.onmicrosoft.com"]
    reasons = {s["tenant"]: s["reason"] for s in resolver.skipped}
    assert "connection reset" in reasons["contoso.onmicrosoft.com"]


def test_network_error_listing_customers_is_remote_error():
    def handler(request):
        raise httpx.ConnectError("connection reset", request=request)

    resolver, recorder = make_resolver(handler)

    with pytest.raises(RemoteOperationError, match="connection reset"):
        asyncio.run(resolver.resolve())
    assert recorder.clients[0]._client is None
