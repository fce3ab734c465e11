from __future__ import annotations

import json
from threading import Lock
from typing import Iterable, Optional

import msal
from azure.identity import ManagedIdentityCredential

from .audit import JsonAuditLogger
from .config import ClientSecretAuth, GraphSettings, ManagedIdentityAuth, ServicePrincipalCredentials


class GraphAuthenticator:
    """Acquires app-only Microsoft Graph tokens for the lab tenant.

    Client secret auth reuses one MSAL application (and its token cache) for
    the lifetime of the authenticator, so concurrent workers share a token
    instead of each hitting the token endpoint. Managed identity relies on
    the platform cache.
    """

    def __init__(
        self,
        settings: GraphSettings,
        audit_logger: JsonAuditLogger,
        credentials: Optional[ServicePrincipalCredentials] = None,
    ):
        self.settings = settings
        self.credentials = credentials
        self.audit = audit_logger
        self._app: Optional[msal.ConfidentialClientApplication] = None
        self._lock = Lock()

    def acquire_token(self, scopes: Iterable[str]) -> str:
        auth_config = self.settings.auth
        scopes = list(scopes)

        if isinstance(auth_config, ClientSecretAuth):
            with self._lock:
                app = self._confidential_app(auth_config)
                result = app.acquire_token_for_client(scopes=scopes)
            token = self._extract_token(result)
            self.audit.info(
                "acquired_app_token",
                tenant_id=self.credentials.tenant_id if self.credentials else None,
                auth_type="client_secret",
            )
            return token

        if isinstance(auth_config, ManagedIdentityAuth):
            credential = ManagedIdentityCredential(client_id=auth_config.client_id)
            result = credential.get_token(*scopes)
            self.audit.info("acquired_app_token", auth_type="managed_identity")
            return result.token

        raise ValueError("Unsupported authentication configuration")

    def _confidential_app(self, auth_config: ClientSecretAuth) -> msal.ConfidentialClientApplication:
        if self._app is None:
            if self.credentials is None:
                raise ValueError("Client secret auth requires service principal credentials")
            self._app = msal.ConfidentialClientApplication(
                client_id=self.credentials.client_id,
                client_credential=self.credentials.client_secret,
                authority=f"{auth_config.authority_host}/{self.credentials.tenant_id}",
                token_cache=msal.TokenCache(),
            )
        return self._app

    @staticmethod
    def _extract_token(result: dict) -> str:
        if not result or "access_token" not in result:
            safe = {k: v for k, v in (result or {}).items() if k != "access_token"}
            raise RuntimeError(f"Token acquisition failed: {json.dumps(safe)}")
        return result["access_token"]
