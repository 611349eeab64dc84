"""Tests for how MSAL failures surface from the authenticator."""

import asyncio

import pytest

from safelist_sync.auth import Authenticator
from safelist_sync.config import AuthConfig, DelegatedAuth
from safelist_sync.errors import AuthenticationError, TenantConnectionError

TENANT = "contoso.onmicrosoft.com"


class OfflineApp:
    def initiate_device_flow(self, scopes=None):
        raise ConnectionError("Max retries exceeded")

    def get_accounts(self, username=None):
        raise ConnectionError("Max retries exceeded")


class NoAccountsApp:
    def get_accounts(self, username=None):
        return []


def make_authenticator(monkeypatch, app):
    authenticator = Authenticator(
        AuthConfig(mode="delegated", delegated=DelegatedAuth("partner.onmicrosoft.com", "app-id"))
    )
    monkeypatch.setattr(authenticator, "_public_app", lambda authority_tenant: app)
    return authenticator


def test_partner_network_error_becomes_authentication_error(monkeypatch):
    authenticator = make_authenticator(monkeypatch, OfflineApp())

    with pytest.raises(AuthenticationError, match="Partner sign-in failed: ConnectionError") as exc:
        asyncio.run(authenticator.acquire_partner_token())
    assert isinstance(exc.value.__cause__, ConnectionError)


def test_tenant_network_error_becomes_tenant_connection_error(monkeypatch):
    authenticator = make_authenticator(monkeypatch, OfflineApp())

    with pytest.raises(TenantConnectionError, match="Token request failed") as exc:
        asyncio.run(authenticator.acquire_tenant_token(TENANT))
    assert exc.value.tenant == TENANT


def test_tenant_errors_raised_by_authenticator_pass_through(monkeypatch):
    authenticator = make_authenticator(monkeypatch, NoAccountsApp())

    with pytest.raises(TenantConnectionError, match="No signed-in partner account"):
        asyncio.run(authenticator.acquire_tenant_token(TENANT))


def test_unknown_mode_is_authentication_error():
    authenticator = Authenticator(AuthConfig(mode="kerberos"))

    with pytest.raises(AuthenticationError, match="Unknown auth mode"):
        asyncio.run(authenticator.acquire_partner_token())
