from __future__ import annotations

import time
from typing import Any, Callable, Dict, Iterable, Optional, Protocol

import httpx

from .audit import JsonAuditLogger
from .config import GraphSettings


class TokenProvider(Protocol):
    def acquire_token(self, scopes: Iterable[str]) -> str: ...


class GraphClient:
    """Microsoft Graph client with throttling retry and audit logging."""

    def __init__(
        self,
        settings: GraphSettings,
        authenticator: TokenProvider,
        audit_logger: JsonAuditLogger,
        session: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.authenticator = authenticator
        self.audit = audit_logger
        self.timeout = settings.timeout
        self.max_retries = settings.max_retries
        self.session = session or httpx.Client(timeout=self.timeout)
        self._sleep = sleep

    def _auth_header(self, scopes: Iterable[str]) -> Dict[str, str]:
        token = self.authenticator.acquire_token(scopes)
        return {"Authorization": f"Bearer {token}"}

    def request(
        self,
        method: str,
        url: str,
        scopes: Optional[Iterable[str]] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        scopes = scopes or self.settings.scopes
        headers = kwargs.pop("headers", {})
        headers.update(self._auth_header(scopes))
        backoff = 1.0

        for attempt in range(1, self.max_retries + 2):
            response = self.session.request(method, url, headers=headers, **kwargs)
            if response.status_code in (429, 503, 504) and attempt <= self.max_retries:
                retry_after = self._get_retry_after_seconds(response) or backoff
                self.audit.warning(
                    "graph_throttled",
                    status=response.status_code,
                    retry_after=retry_after,
                    attempt=attempt,
                    url=url,
                )
                self._sleep(retry_after)
                backoff = min(backoff * 2, 30)
                continue

            if response.status_code >= 400:
                # Deleting something already gone is for the caller to judge.
                gone = method == "DELETE" and response.status_code == 404
                log = self.audit.warning if gone else self.audit.error
                log(
                    "graph_request_failed",
                    method=method,
                    status=response.status_code,
                    url=url,
                    body=response.text,
                )
                response.raise_for_status()

            self.audit.info(
                "graph_request_succeeded",
                method=method,
                status=response.status_code,
                url=url,
            )
            return response

        raise RuntimeError("Maximum retry attempts exceeded for Graph request")

    def _get_retry_after_seconds(self, response: httpx.Response) -> Optional[float]:
        retry_after = response.headers.get("Retry-After")
        if retry_after is None:
            return None
        try:
            return float(retry_after)
        except ValueError:
            return None

    def _url(self, path: str) -> str:
        return f"{self.settings.base_url.rstrip('/')}{path}"

    def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return self.request("GET", self._url(path), **kwargs)

    def post(self, path: str, json: Any, **kwargs: Any) -> httpx.Response:
        return self.request("POST", self._url(path), json=json, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> httpx.Response:
        return self.request("DELETE", self._url(path), **kwargs)

    def close(self) -> None:
        self.session.close()
