"""
Authentication module — partner sign-in and per-tenant delegated tokens.
Uses MSAL for token acquisition against Microsoft Identity Platform.

The partner token (Partner Center scope) is acquired once per run. Tenant
tokens (Exchange Online scope) are acquired per customer tenant from the
same MSAL app credentials or token cache, so the operator signs in once.
"""

from __future__ import annotations

import asyncio
import base64
import getpass
import logging
import os
import time
from typing import Optional

from cryptography.hazmat.primitives.serialization import pkcs12, Encoding, PrivateFormat, NoEncryption
from cryptography.hazmat.primitives.hashes import SHA1
import msal

from ..config import (
    AuthConfig,
    EXCHANGE_SCOPES,
    LOGIN_AUTHORITY,
    PARTNER_CENTER_SCOPES,
    SIGN_IN_TIMEOUT_SECONDS,
)
from ..errors import AuthenticationError, OperationTimeout, TenantConnectionError
from ..retry import call_with_timeout

logger = logging.getLogger("safelist_sync.auth")

CERT_PASSWORD_ENV = "SAFELIST_SYNC_CERT_PASSWORD"


class Authenticator:
    """
    Handles MSAL-based authentication.
    Supports:
      - Certificate-based app-only authentication (multi-tenant app)
      - Delegated interactive authentication (device code flow)
    """

    def __init__(self, config: AuthConfig, sign_in_timeout: float = SIGN_IN_TIMEOUT_SECONDS):
        self.config = config
        self.sign_in_timeout = sign_in_timeout
        self._token_cache = msal.SerializableTokenCache()
        self._client_credential: Optional[dict] = None
        self._account_hint: str = ""

    # ── Partner ──────────────────────────────────────────────────────────

    async def acquire_partner_token(self) -> str:
        """
        Acquire a Partner Center token based on configured auth mode.

        Network failures inside MSAL (requests exceptions are OSErrors)
        surface as AuthenticationError like any other sign-in failure.
        """
        try:
            if self.config.mode == "certificate":
                token = await asyncio.to_thread(self._acquire_certificate_partner_token)
            elif self.config.mode == "delegated":
                token = await self._acquire_delegated_partner_token()
            else:
                raise AuthenticationError(f"Unknown auth mode: {self.config.mode}")
        except OSError as e:
            raise AuthenticationError(f"Partner sign-in failed: {type(e).__name__}: {e}") from e
        return token

    def _acquire_certificate_partner_token(self) -> str:
        cert_config = self.config.certificate
        if not cert_config:
            raise AuthenticationError("Certificate auth config not provided.")

        logger.info("Authenticating partner with certificate-based app credentials...")
        app = self._confidential_app(cert_config.tenant_id)
        result = app.acquire_token_for_client(scopes=PARTNER_CENTER_SCOPES)

        if "access_token" in result:
            logger.info("Partner authentication successful.")
            return result["access_token"]
        raise AuthenticationError(f"Certificate auth failed: {_describe(result)}")

    async def _acquire_delegated_partner_token(self) -> str:
        deleg_config = self.config.delegated
        if not deleg_config:
            raise AuthenticationError("Delegated auth config not provided.")

        logger.info("Initiating device code authentication flow...")
        app = self._public_app(deleg_config.tenant_id)

        flow = app.initiate_device_flow(scopes=PARTNER_CENTER_SCOPES)
        if "user_code" not in flow:
            raise AuthenticationError(
                f"Device code flow failed: {flow.get('error_description', 'Unknown')}"
            )
        # MSAL stops polling at expires_at; keep it inside our own deadline
        flow["expires_at"] = min(
            flow.get("expires_at", float("inf")),
            time.time() + self.sign_in_timeout,
        )

        print(f"\n{'='*60}")
        print(f"  To sign in, open: {flow['verification_uri']}")
        print(f"  Enter code: {flow['user_code']}")
        print(f"{'='*60}\n")

        try:
            result = await call_with_timeout(
                lambda: asyncio.to_thread(app.acquire_token_by_device_flow, flow),
                self.sign_in_timeout,
                "Partner sign-in",
            )
        except OperationTimeout as e:
            raise AuthenticationError(str(e)) from e

        if "access_token" in result:
            claims = result.get("id_token_claims") or {}
            self._account_hint = deleg_config.username or claims.get("preferred_username", "")
            logger.info(f"Delegated authentication successful{_as(self._account_hint)}.")
            return result["access_token"]
        raise AuthenticationError(f"Delegated auth failed: {_describe(result)}")

    # ── Tenants ──────────────────────────────────────────────────────────

    async def acquire_tenant_token(self, tenant: str) -> str:
        """Acquire an Exchange Online token scoped to a customer tenant."""
        try:
            return await asyncio.to_thread(self._acquire_tenant_token, tenant)
        except TenantConnectionError:
            raise
        except OSError as e:
            raise TenantConnectionError(tenant, f"Token request failed: {type(e).__name__}: {e}") from e

    def _acquire_tenant_token(self, tenant: str) -> str:
        if self.config.mode == "certificate":
            cert_config = self.config.certificate
            if not cert_config:
                raise TenantConnectionError(tenant, "Certificate auth config not provided")
            try:
                app = self._confidential_app(tenant)
            except AuthenticationError as e:
                raise TenantConnectionError(tenant, str(e)) from e
            result = app.acquire_token_for_client(scopes=EXCHANGE_SCOPES)
        elif self.config.mode == "delegated":
            deleg_config = self.config.delegated
            if not deleg_config:
                raise TenantConnectionError(tenant, "Delegated auth config not provided")
            app = self._public_app(tenant)
            accounts = app.get_accounts(username=self._account_hint or None)
            if not accounts:
                raise TenantConnectionError(tenant, "No signed-in partner account in token cache")
            result = app.acquire_token_silent(EXCHANGE_SCOPES, account=accounts[0])
            if not result:
                raise TenantConnectionError(tenant, "Delegated token could not be refreshed")
        else:
            raise TenantConnectionError(tenant, f"Unknown auth mode: {self.config.mode}")

        if "access_token" in result:
            logger.debug(f"[{tenant}] Exchange token acquired.")
            return result["access_token"]
        raise TenantConnectionError(tenant, _describe(result))

    # ── MSAL apps ────────────────────────────────────────────────────────

    def _public_app(self, authority_tenant: str) -> msal.PublicClientApplication:
        return msal.PublicClientApplication(
            client_id=self.config.delegated.client_id,
            authority=f"{LOGIN_AUTHORITY}/{authority_tenant}",
            token_cache=self._token_cache,
        )

    def _confidential_app(self, authority_tenant: str) -> msal.ConfidentialClientApplication:
        return msal.ConfidentialClientApplication(
            client_id=self.config.certificate.client_id,
            authority=f"{LOGIN_AUTHORITY}/{authority_tenant}",
            client_credential=self._load_certificate(),
            token_cache=self._token_cache,
        )

    def _load_certificate(self) -> dict:
        """Load the base64 PFX once; the password is prompted at most once."""
        if self._client_credential is not None:
            return self._client_credential

        cert_config = self.config.certificate
        cert_path = cert_config.certificate_path
        password = cert_config.certificate_password
        if not password:
            password = os.environ.get(CERT_PASSWORD_ENV, "")
        if not password:
            password = getpass.getpass("Enter the certificate password: ")

        try:
            with open(cert_path, "r") as f:
                cert_base64 = f.read().strip()

            cert_bytes = base64.b64decode(cert_base64)
            password_bytes = password.encode("utf-8") if password else None

            private_key, certificate, _ = pkcs12.load_key_and_certificates(
                cert_bytes, password_bytes
            )
            if private_key is None or certificate is None:
                raise ValueError("PFX does not contain a private key and certificate")

            private_key_pem = private_key.private_bytes(
                Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
            ).decode("utf-8")
            thumbprint = cert_config.thumbprint or certificate.fingerprint(SHA1()).hex()

            logger.info(f"Certificate loaded. Thumbprint: {thumbprint}")

        except FileNotFoundError:
            raise AuthenticationError(f"Certificate file not found: {cert_path}")
        except (OSError, ValueError) as e:
            raise AuthenticationError(f"Failed to load certificate: {e}")

        self._client_credential = {
            "thumbprint": thumbprint,
            "private_key": private_key_pem,
        }
        return self._client_credential


def _describe(result: dict) -> str:
    return result.get("error_description", result.get("error", "Unknown"))


def _as(account: str) -> str:
    return f" as {account}" if account else ""
