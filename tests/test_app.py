"""App-level tests for wiring, providers and persisted preferences."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import httpx
import pytest

from branchpanel.app import BranchPanelApp, build_session
from branchpanel.auth import MemorySecretStore, TokenSet
from branchpanel.config import AppConfig
from branchpanel.models import ConnectionState, ConnectionType
from branchpanel.providers import DatabaseSwitchProvider, PanelActionProvider
from branchpanel.session import SessionManager
from branchpanel.widgets import ConnectionPanel, SignInPanel, StatusBar


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


BRANCH = "/projects/p1/branches/b1"

ROUTES: dict[str, Any] = {
    "/users/me/organizations": {"organizations": [{"id": "o1", "name": "Acme"}]},
    "/projects?org_id=o1": {"projects": [{"id": "p1", "name": "web", "org_id": "o1"}]},
    "/projects/p1/branches": {"branches": [{"id": "b1", "name": "main"}]},
    f"{BRANCH}/endpoints": {"endpoints": [{"id": "ep-a", "host": "ep-a.neon.tech", "type": "read_write"}]},
    f"{BRANCH}/databases": {"databases": [{"name": "app", "owner_name": "alex"}, {"name": "ledger", "owner_name": "sam"}]},
    f"{BRANCH}/roles": {"roles": [{"name": "alex"}, {"name": "sam"}]},
    f"{BRANCH}/roles/alex/reveal_password": {"password": "pw-alex"},
    f"{BRANCH}/roles/sam/reveal_password": {"password": "pw-sam"},
}


def _handler(request: httpx.Request) -> httpx.Response:
    payload = ROUTES.get(request.url.raw_path.decode().removeprefix("/api/v2"))
    if payload is None:
        return httpx.Response(404, json={"message": "not found"})
    return httpx.Response(200, json=payload)


def _config(**overrides: Any) -> AppConfig:
    return AppConfig(backend="demo", include_personal_account=False, debounce_delay=0, **overrides)


def _session(config: AppConfig, token: str | None = "napi_ok") -> SessionManager:
    store = MemorySecretStore({"persistent_api_token": token} if token else {})
    http = httpx.AsyncClient(base_url="https://console.test/api/v2", transport=httpx.MockTransport(_handler))
    return build_session(config, store=store, http_client=http)


def _app(monkeypatch: pytest.MonkeyPatch, token: str | None = "napi_ok", **overrides: Any) -> BranchPanelApp:
    config = _config(**overrides)
    monkeypatch.setattr("branchpanel.app._load_app_config", lambda: config)
    return BranchPanelApp(session_manager=_session(config, token))


class _DummyScreen:
    """Minimal stub so providers can reference an app without a running screen stack."""

    def __init__(self, app: BranchPanelApp) -> None:
        self.app = app
        self.focused = None


def test_build_session_applies_config() -> None:
    manager = _session(_config(connection_type=ConnectionType.NEW))

    assert manager.selection.selection.connection_type is ConnectionType.NEW
    assert manager.state == ConnectionState()
    assert manager.scanner.endpoint_cache.ttl == 3600.0


@pytest.mark.anyio
async def test_action_provider_refresh_without_credentials_shows_sign_in(monkeypatch: pytest.MonkeyPatch) -> None:
    app = _app(monkeypatch, token=None)

    provider = PanelActionProvider(_DummyScreen(app))
    hits = [hit async for hit in provider.discover()]
    labels = [hit.display for hit in hits]
    assert "Refresh panel" in labels
    assert "Sign out" in labels
    assert "Disconnect" not in labels

    await hits[labels.index("Refresh panel")].command()

    assert app.signed_in is False
    assert app.sign_in_message == "Authentication required. Please sign in."


@pytest.mark.anyio
async def test_database_switch_provider_lists_connected_branch(monkeypatch: pytest.MonkeyPatch) -> None:
    app = _app(monkeypatch)
    manager = app.session_manager
    await manager.auth.load()
    await manager.initialize()
    await app.perform("select_org", org_id="o1")
    await app.perform("select_project", project_id="p1")
    await app.perform("select_branch", branch_id="b1")
    await app.perform("connect")

    provider = DatabaseSwitchProvider(_DummyScreen(app))
    hits = [hit async for hit in provider.search("ledger")]
    assert hits

    await hits[0].command()

    assert manager.state.selected_database == "ledger"
    assert app.last_view is not None
    assert app.last_view.connection.selected_database == "ledger"
    assert any("Connected to web" in message for message, _ in app.pending_notifications)


@pytest.mark.anyio
async def test_connection_type_toggle_persists(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.toml"
    monkeypatch.setattr("branchpanel.config.CONFIG_FILE", config_path)
    app = _app(monkeypatch, token=None)

    await app.perform("set_connection_type", connection_type="new")

    assert app.config.connection_type is ConnectionType.NEW
    assert 'connection_type = "new"' in config_path.read_text()


@pytest.mark.anyio
async def test_failed_intent_queues_warning_before_mount(monkeypatch: pytest.MonkeyPatch) -> None:
    app = _app(monkeypatch)
    await app.session_manager.auth.load()

    await app.perform("select_org", org_id="ghost")

    message, severity = app.pending_notifications[-1]
    assert severity == "warning"
    assert "ghost" in message


@pytest.mark.anyio
async def test_mounted_app_renders_signed_in_panel(monkeypatch: pytest.MonkeyPatch) -> None:
    app = _app(monkeypatch)

    async with app.run_test() as pilot:
        await app.workers.wait_for_complete()
        await pilot.pause()

        assert app.signed_in is True
        assert app.last_view is not None
        assert [org.id for org in app.last_view.selection.orgs] == ["o1"]
        assert app.query_one(SignInPanel).display is False
        assert app.query_one(ConnectionPanel).display is True


@pytest.mark.anyio
async def test_mounted_app_signed_out_shows_sign_in(monkeypatch: pytest.MonkeyPatch) -> None:
    app = _app(monkeypatch, token=None)

    async with app.run_test() as pilot:
        await app.workers.wait_for_complete()
        await pilot.pause()

        assert app.signed_in is False
        assert app.query_one(SignInPanel).display is True
        assert app.query_one(ConnectionPanel).display is False


@pytest.mark.anyio
async def test_build_session_refreshes_expired_oauth_token() -> None:
    refreshed: list[TokenSet] = []

    async def _refresher(current: TokenSet) -> TokenSet:
        refreshed.append(current)
        return TokenSet(access_token="fresh", refresh_token="r2")

    def _oauth_handler(request: httpx.Request) -> httpx.Response:
        if request.headers.get("Authorization") == "Bearer stale":
            return httpx.Response(401)
        return _handler(request)

    http = httpx.AsyncClient(base_url="https://console.test/api/v2", transport=httpx.MockTransport(_oauth_handler))
    manager = build_session(_config(), refresher=_refresher, http_client=http)
    await manager.auth.sign_in(TokenSet(access_token="stale", refresh_token="r1"))

    orgs = await manager.gateway.list_orgs()

    assert [org.id for org in orgs] == ["o1"]
    assert [token.refresh_token for token in refreshed] == ["r1"]
    assert await manager.auth.is_authenticated() is True

def test_status_bar_describes_connection() -> None:
    state = ConnectionState(
        connected=True,
        connected_project_name="web",
        selected_database="app",
        selected_role="alex",
        status="Healthy",
        latency_ms=12,
    )

    assert StatusBar.describe(state) == "Project: web | Database: app | Role: alex | Status: Healthy (12 ms)"
    assert StatusBar.describe(ConnectionState(is_starting=True)) == "Connecting…"
