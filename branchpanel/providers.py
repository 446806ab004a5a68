"""Command palette providers for core panel actions."""

from __future__ import annotations

from typing import Any

from textual.command import DiscoveryHit, Hit, Hits, Provider
from textual.types import IgnoreReturnCallbackType

from .session import SessionManager


class _PanelProvider(Provider):
    @property
    def _session_manager(self) -> SessionManager | None:
        manager = getattr(self.app, "session_manager", None)
        if isinstance(manager, SessionManager):
            return manager
        return None

    def _build_callback(self, intent: str, **payload: Any) -> IgnoreReturnCallbackType:
        async def _run() -> None:
            perform = getattr(self.app, "perform", None)
            if perform is None:
                return
            await perform(intent, **payload)

        return _run


class PanelActionProvider(_PanelProvider):
    """Expose refresh, connect/disconnect, scan and sign-out actions."""

    async def search(self, query: str) -> Hits:
        matcher = self.matcher(query)
        for label, intent, payload, help_text in self._actions():
            score = matcher.match(label)
            if score > 0:
                yield Hit(
                    score=score,
                    match_display=matcher.highlight(label),
                    command=self._build_callback(intent, **payload),
                    help=help_text,
                )

    async def discover(self) -> Hits:
        for label, intent, payload, help_text in self._actions():
            yield DiscoveryHit(
                display=label,
                command=self._build_callback(intent, **payload),
                help=help_text,
            )

    def _actions(self) -> list[tuple[str, str, dict[str, Any], str]]:
        manager = self._session_manager
        if manager is None:
            return []
        actions: list[tuple[str, str, dict[str, Any], str]] = [
            ("Refresh panel", "refresh", {}, "Clear cached lookups and reload every list."),
            ("Scan workspace for connections", "scan_connections", {}, "Look for connection strings in config files."),
        ]
        if manager.state.connected:
            actions.append(("Disconnect", "disconnect", {}, "Close the branch connection."))
        elif manager.selection.selection.project_id:
            actions.append(("Connect to selected branch", "connect", {}, "Open a connection to the branch."))
        if manager.selection.selection.branch_id:
            actions.append(("Reset branch to parent", "reset_branch", {}, "Discard branch changes."))
        actions.append(("Sign out", "sign_out", {}, "Forget all stored credentials."))
        return actions


class DatabaseSwitchProvider(_PanelProvider):
    """Expose the connected branch's databases and roles."""

    async def search(self, query: str) -> Hits:
        matcher = self.matcher(query)
        for label, intent, payload in self._choices():
            score = matcher.match(label)
            if score > 0:
                yield Hit(
                    score=score,
                    match_display=matcher.highlight(label),
                    command=self._build_callback(intent, **payload),
                    help="Change the displayed connection details.",
                )

    async def discover(self) -> Hits:
        for label, intent, payload in self._choices():
            yield DiscoveryHit(
                display=label,
                command=self._build_callback(intent, **payload),
                help="Change the displayed connection details.",
            )

    def _choices(self) -> list[tuple[str, str, dict[str, Any]]]:
        manager = self._session_manager
        if manager is None or not manager.state.connected:
            return []
        choices = [
            (f"Use database: {database.name}", "select_database", {"name": database.name})
            for database in manager.state.databases
        ]
        choices.extend(
            (f"Use role: {role.name}", "select_role", {"name": role.name}) for role in manager.state.roles
        )
        return choices


__all__ = ["DatabaseSwitchProvider", "PanelActionProvider"]
