"""Token source contract and the in-process implementation used by the app."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Protocol, runtime_checkable

LOG = logging.getLogger(__name__)

AuthListener = Callable[[bool], Awaitable[None] | None]

ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"
PERSISTENT_TOKEN_KEY = "persistent_api_token"

REFRESH_BUFFER_SECONDS = 60.0


@dataclass(frozen=True, slots=True)
class TokenSet:
    """Short-lived OAuth credential pair."""

    access_token: str
    refresh_token: str | None = None
    expires_at: float | None = None
    token_type: str = "Bearer"

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> TokenSet | None:
        """Build a token set from an OAuth response, ignoring non-string tokens."""

        access = payload.get("access_token")
        if not isinstance(access, str) or not access:
            return None
        refresh = payload.get("refresh_token")
        expires_at = payload.get("expires_at")
        if not isinstance(expires_at, (int, float)):
            expires_in = payload.get("expires_in")
            expires_at = time.time() + expires_in if isinstance(expires_in, (int, float)) else None
        token_type = payload.get("token_type")
        return cls(
            access_token=access,
            refresh_token=refresh if isinstance(refresh, str) and refresh else None,
            expires_at=float(expires_at) if expires_at is not None else None,
            token_type=token_type if isinstance(token_type, str) else "Bearer",
        )


TokenRefresher = Callable[[TokenSet], Awaitable[TokenSet]]


@runtime_checkable
class TokenSource(Protocol):
    """Contract the request client and view controller rely on."""

    async def get_access_token(self) -> str | None:
        """Current OAuth access token, if any."""

    async def get_persistent_token(self) -> str | None:
        """Long-lived personal API token, if any."""

    async def refresh(self, force: bool = False) -> bool:
        """Refresh the OAuth token; returns whether a usable token exists."""

    async def sign_out(self) -> None:
        """Drop every credential and notify listeners."""

    async def is_authenticated(self) -> bool:
        """Whether any credential is present."""

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Subscribe to auth changes; returns an unsubscribe handle."""


class SecretStore(Protocol):
    """Persistent secret storage provided by the host environment."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemorySecretStore:
    """Process-local secret store (tests and ephemeral sessions)."""

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        self._values[key] = value

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)


class AuthSession:
    """Owns the active credential and implements :class:`TokenSource`.

    A personal token, once set, takes precedence over OAuth tokens. Concurrent
    refresh calls share one in-flight refresh so a one-time refresh token is
    never spent twice.
    """

    def __init__(
        self,
        *,
        refresher: TokenRefresher | None = None,
        store: SecretStore | None = None,
        refresh_buffer: float = REFRESH_BUFFER_SECONDS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._refresher = refresher
        self._store = store or MemorySecretStore()
        self._refresh_buffer = refresh_buffer
        self._clock = clock or time.time
        self._token_set: TokenSet | None = None
        self._persistent_token: str | None = None
        self._listeners: set[AuthListener] = set()
        self._refresh_task: asyncio.Task[bool] | None = None
        self._pending: set[asyncio.Future[Any]] = set()

    @property
    def token_set(self) -> TokenSet | None:
        return self._token_set

    async def load(self) -> bool:
        """Restore credentials from the secret store; returns whether any exist."""

        self._persistent_token = await self._store.get(PERSISTENT_TOKEN_KEY)
        access = await self._store.get(ACCESS_TOKEN_KEY)
        refresh = await self._store.get(REFRESH_TOKEN_KEY)
        if access or refresh:
            self._token_set = TokenSet(access_token=access or "", refresh_token=refresh)
        LOG.debug(
            "Restored credentials",
            extra={"persistent": bool(self._persistent_token), "oauth": self._token_set is not None},
        )
        return await self.is_authenticated()

    async def get_access_token(self) -> str | None:
        if self._token_set and self._token_set.access_token:
            return self._token_set.access_token
        return None

    async def get_persistent_token(self) -> str | None:
        return self._persistent_token

    async def is_authenticated(self) -> bool:
        return bool(self._persistent_token) or bool(await self.get_access_token())

    async def sign_in(self, token_set: TokenSet) -> None:
        """Install tokens produced by the OAuth flow."""

        self._token_set = token_set
        await self._persist(token_set)
        self._notify(True)

    async def set_persistent_token(self, token: str) -> None:
        self._persistent_token = token
        await self._store.set(PERSISTENT_TOKEN_KEY, token)
        self._notify(True)

    async def sign_out(self) -> None:
        self._token_set = None
        self._persistent_token = None
        for key in (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, PERSISTENT_TOKEN_KEY):
            await self._store.delete(key)
        self._notify(False)

    async def refresh(self, force: bool = False) -> bool:
        if self._refresh_task is not None:
            LOG.debug("Awaiting ongoing token refresh")
            return await asyncio.shield(self._refresh_task)
        token_set = self._token_set
        if token_set is None or not token_set.refresh_token or self._refresher is None:
            return False
        expires_at = token_set.expires_at
        if not force and expires_at is not None and expires_at - self._clock() > self._refresh_buffer:
            return True
        task = asyncio.ensure_future(self._run_refresh(token_set))
        self._refresh_task = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._refresh_task is task:
                self._refresh_task = None

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    async def wait_for_listeners(self) -> None:
        """Wait until scheduled async listeners have finished (testing helper)."""

        while self._pending:
            await asyncio.gather(*tuple(self._pending), return_exceptions=True)

    async def _run_refresh(self, token_set: TokenSet) -> bool:
        assert self._refresher is not None
        try:
            refreshed = await self._refresher(token_set)
        except Exception:
            LOG.exception("Token refresh failed; keeping existing tokens")
            return False
        if not refreshed.access_token:
            return False
        if refreshed.refresh_token is None and token_set.refresh_token:
            refreshed = TokenSet(
                access_token=refreshed.access_token,
                refresh_token=token_set.refresh_token,
                expires_at=refreshed.expires_at,
                token_type=refreshed.token_type,
            )
        self._token_set = refreshed
        await self._persist(refreshed)
        return True

    async def _persist(self, token_set: TokenSet) -> None:
        await self._store.set(ACCESS_TOKEN_KEY, token_set.access_token)
        if token_set.refresh_token:
            await self._store.set(REFRESH_TOKEN_KEY, token_set.refresh_token)
        else:
            await self._store.delete(REFRESH_TOKEN_KEY)

    def _notify(self, authenticated: bool) -> None:
        for listener in tuple(self._listeners):
            try:
                result = listener(authenticated)
            except Exception:
                LOG.exception("Auth listener failed", extra={"authenticated": authenticated})
                continue
            if inspect.isawaitable(result):
                future = asyncio.ensure_future(result)
                self._pending.add(future)
                future.add_done_callback(self._listener_done)

    def _listener_done(self, future: asyncio.Future[Any]) -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            LOG.error("Auth listener failed", exc_info=error)


__all__ = [
    "AuthListener",
    "AuthSession",
    "MemorySecretStore",
    "SecretStore",
    "TokenRefresher",
    "TokenSet",
    "TokenSource",
]
