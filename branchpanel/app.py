"""Textual application entry point for branchpanel."""

from __future__ import annotations

import logging
from typing import Any

from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import Footer, Header

from .auth import AuthSession, SecretStore, TokenRefresher
from .client import RequestClient
from .config import AppConfig, load_config, save_config
from .connections import AsyncpgConnectionBackend, ConnectionBackend, DemoConnectionBackend
from .detection import ConnectionScanner
from .gateway import ResourceGateway
from .models import ConnectionType
from .providers import DatabaseSwitchProvider, PanelActionProvider
from .retry import RetryPolicy
from .selection import SelectionStateMachine
from .session import SessionManager
from .viewsync import PanelView, ViewSyncController
from .widgets import ConnectionPanel, NavigationSidebar, SignInPanel, StatusBar

LOG = logging.getLogger(__name__)


def _load_app_config() -> AppConfig:
    """Load configuration with a small wrapper for test overrides."""

    return load_config()


def build_session(
    config: AppConfig,
    *,
    store: SecretStore | None = None,
    refresher: TokenRefresher | None = None,
    http_client: Any = None,
) -> SessionManager:
    """Wire the core components according to ``config``.

    ``refresher`` exchanges an expiring OAuth token set for a new one; without
    it an expired OAuth credential signs the user out.
    """

    auth = AuthSession(refresher=refresher, store=store)
    client = RequestClient(
        auth,
        base_url=config.api_base_url,
        timeout=config.request_timeout,
        client=http_client,
    )
    gateway = ResourceGateway(
        client,
        project_retry=RetryPolicy(
            max_attempts=config.project_list_attempts,
            delay_seconds=config.project_list_retry_delay,
        ),
    )
    selection = SelectionStateMachine(
        gateway,
        include_personal=config.include_personal_account,
        connection_type=config.connection_type,
    )
    backend: ConnectionBackend
    if config.backend == "demo":
        backend = DemoConnectionBackend()
    else:
        backend = AsyncpgConnectionBackend()
    scanner = ConnectionScanner(gateway, endpoint_ttl=config.endpoint_cache_ttl, scan_ttl=config.scan_cache_ttl)
    return SessionManager(
        auth=auth,
        client=client,
        gateway=gateway,
        selection=selection,
        backend=backend,
        scanner=scanner,
        api_key_name=config.api_key_name,
    )


class AppPresenter:
    """Adapts the Textual app to the view-sync presenter protocol."""

    def __init__(self, app: BranchPanelApp) -> None:
        self._app = app

    def render(self, view: PanelView) -> None:
        self._app.show_panel(view)

    def render_sign_in(self, message: str | None = None) -> None:
        self._app.show_sign_in(message)

    def notify(self, message: str, severity: str = "information") -> None:
        self._app.safe_notify(message, severity=severity)


class BranchPanelApp(App[None]):
    """Side panel for browsing and connecting to database branches."""

    COMMANDS = App.COMMANDS | {PanelActionProvider, DatabaseSwitchProvider}
    CSS = """
    Screen {
        layout: vertical;
    }
    #content {
        layout: horizontal;
        height: 1fr;
    }
    #main-column {
        layout: vertical;
        height: 1fr;
        border-left: solid $surface-darken-1;
    }
    """

    BINDINGS = [
        ("ctrl+c", "quit", "Quit"),
        ("ctrl+r", "refresh", "Refresh"),
        ("ctrl+p", "command_palette", "Command Palette"),
    ]

    def __init__(self, session_manager: SessionManager | None = None) -> None:
        super().__init__()
        self._config = _load_app_config()
        self._session_manager = session_manager or build_session(self._config)
        self._controller = ViewSyncController(
            self._session_manager,
            AppPresenter(self),
            debounce_delay=self._config.debounce_delay,
            workspace_root=self._config.resolved_workspace_root(),
        )
        self._last_view: PanelView | None = None
        self._signed_in = False
        self._sign_in_message: str | None = None
        self._pending_notifications: list[tuple[str, str]] = []

    def compose(self) -> ComposeResult:
        """Compose the root layout."""

        yield Header(show_clock=True)
        main_column = Vertical(SignInPanel(), ConnectionPanel(), id="main-column")
        yield Horizontal(NavigationSidebar(), main_column, id="content")
        yield StatusBar()
        yield Footer()

    async def on_mount(self) -> None:
        self._flush_pending_notifications()
        self._apply_visibility()
        self.run_worker(self._controller.start(), group="view-sync", exit_on_error=False)

    async def on_unmount(self) -> None:
        self._controller.close()
        await self._session_manager.close()

    def action_refresh(self) -> None:
        self.dispatch_intent("refresh")

    @property
    def session_manager(self) -> SessionManager:
        """Expose the session manager for tests and providers."""

        return self._session_manager

    @property
    def controller(self) -> ViewSyncController:
        return self._controller

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def last_view(self) -> PanelView | None:
        """Most recent signed-in view (``None`` while signed out)."""

        return self._last_view

    @property
    def signed_in(self) -> bool:
        return self._signed_in

    @property
    def sign_in_message(self) -> str | None:
        return self._sign_in_message

    def dispatch_intent(self, intent: str, **payload: Any) -> None:
        """Fire-and-forget variant of :meth:`perform` for widget handlers."""

        self.run_worker(self.perform(intent, **payload), group="intents", exit_on_error=False)

    async def perform(self, intent: str, **payload: Any) -> Any:
        result = await self._controller.dispatch(intent, **payload)
        if intent == "set_connection_type":
            self.remember_connection_type(self._session_manager.selection.selection.connection_type)
        return result

    def remember_connection_type(self, connection_type: ConnectionType) -> None:
        """Persist the connection mode when it changes."""

        if self._config.connection_type is connection_type:
            return
        self._config = self._config.with_connection_type(connection_type)
        save_config(self._config)

    def show_panel(self, view: PanelView) -> None:
        self._last_view = view
        self._signed_in = True
        self._sign_in_message = None
        if not self.is_running:
            return
        for sidebar in self.query(NavigationSidebar):
            sidebar.show(view.selection)
        for panel in self.query(ConnectionPanel):
            panel.show(view.connection, view.detected)
        for status_bar in self.query(StatusBar):
            status_bar.show(view.connection)
        self._apply_visibility()

    def show_sign_in(self, message: str | None = None) -> None:
        self._last_view = None
        self._signed_in = False
        self._sign_in_message = message
        if not self.is_running:
            return
        for panel in self.query(SignInPanel):
            panel.show_message(message)
        for status_bar in self.query(StatusBar):
            status_bar.show_signed_out()
        self._apply_visibility()

    def safe_notify(self, message: str, *, severity: str = "information") -> None:
        if self.is_running:
            try:
                self.notify(message, severity=severity)  # type: ignore[arg-type]
            except Exception:
                LOG.exception("Failed to display notification", extra={"message": message})
        else:
            self._pending_notifications.append((message, severity))

    @property
    def pending_notifications(self) -> tuple[tuple[str, str], ...]:
        """Notifications queued before the app started (testing helper)."""

        return tuple(self._pending_notifications)

    def _apply_visibility(self) -> None:
        for panel in self.query(SignInPanel):
            panel.display = not self._signed_in
        for widget in self.query(NavigationSidebar):
            widget.display = self._signed_in
        for widget in self.query(ConnectionPanel):
            widget.display = self._signed_in

    def _flush_pending_notifications(self) -> None:
        if not self._pending_notifications:
            return
        pending = list(self._pending_notifications)
        self._pending_notifications.clear()
        for message, severity in pending:
            try:
                self.notify(message, severity=severity)  # type: ignore[arg-type]
            except Exception:
                LOG.exception("Failed to display queued notification", extra={"message": message})


def main() -> None:
    """Configure logging and invoke the Textual application."""

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    BranchPanelApp().run()


if __name__ == "__main__":
    main()
