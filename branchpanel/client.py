"""Authenticated JSON request client for the resource API."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from .auth import TokenSource
from .errors import InvalidResponse, RequestFailed, RequestTimeout, SessionExpired, Unauthenticated

LOG = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://console.neon.tech/api/v2"
DEFAULT_TIMEOUT_SECONDS = 30.0
PROBE_PATH = "/users/me/organizations"


class RequestClient:
    """Sends bearer-authenticated requests and owns the 401 refresh protocol.

    A 401 under an OAuth credential triggers at most one forced refresh and one
    re-send of the identical request. A 401 under a personal token signs the
    user out immediately.
    """

    def __init__(
        self,
        tokens: TokenSource,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._tokens = tokens
        self._owns_client = client is None
        self._http = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def execute(self, path: str, method: str = "GET", body: Any = None) -> Any:
        """Send the request and decode its JSON body (``None`` when empty)."""

        for attempt in range(2):
            token, persistent = await self._credential()
            response = await self._send(path, method, body, token)
            if response.status_code != 401:
                return self._decode(response, path)
            LOG.debug("Received 401", extra={"path": path, "attempt": attempt})
            if persistent or attempt >= 1:
                await self._tokens.sign_out()
                raise SessionExpired()
            if not await self._try_refresh():
                await self._tokens.sign_out()
                raise SessionExpired()
        raise SessionExpired()  # pragma: no cover - loop always returns or raises

    async def probe(self, token: str) -> bool:
        """Check whether ``token`` is accepted, without refreshing or signing out."""

        try:
            response = await self._send(PROBE_PATH, "GET", None, token)
        except (RequestTimeout, RequestFailed):
            LOG.exception("Token probe failed")
            return False
        return response.is_success

    async def _credential(self) -> tuple[str, bool]:
        persistent = await self._tokens.get_persistent_token()
        if persistent:
            return persistent, True
        access = await self._tokens.get_access_token()
        if access:
            return access, False
        raise Unauthenticated()

    async def _try_refresh(self) -> bool:
        try:
            refreshed = await self._tokens.refresh(True)
        except Exception:
            LOG.exception("Token refresh raised")
            return False
        if not refreshed:
            return False
        return bool(await self._tokens.get_access_token())

    async def _send(self, path: str, method: str, body: Any, token: str) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        LOG.debug("API request", extra={"method": method, "path": path})
        try:
            return await self._http.request(method, path, headers=headers, json=body)
        except httpx.TimeoutException as exc:
            raise RequestTimeout(f"Request timed out: {method} {path}") from exc
        except httpx.HTTPError as exc:
            raise RequestFailed(None, str(exc)) from exc

    @staticmethod
    def _decode(response: httpx.Response, path: str) -> Any:
        if not response.is_success:
            try:
                detail: Any = response.json()
            except ValueError:
                detail = response.text
            LOG.debug("API error", extra={"path": path, "status": response.status_code})
            raise RequestFailed(response.status_code, detail)
        if not response.content or not response.content.strip():
            return None
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise InvalidResponse(
                response.status_code,
                response.text,
                message=f"Invalid JSON payload from {path}",
            ) from exc


__all__ = ["DEFAULT_BASE_URL", "DEFAULT_TIMEOUT_SECONDS", "RequestClient"]
