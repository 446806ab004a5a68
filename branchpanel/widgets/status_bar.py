"""Status bar widget that mirrors connection information."""

from __future__ import annotations

from textual.widgets import Static

from branchpanel.models import ConnectionState


class StatusBar(Static):
    """Compact status strip rendered above Textual's footer."""

    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        padding: 0 1;
        background: $surface-darken-3;
        color: $text;
    }
    """

    def __init__(self) -> None:
        super().__init__("Signed out", id="status-bar")

    def show(self, state: ConnectionState) -> None:
        self.update(self.describe(state))

    def show_signed_out(self) -> None:
        self.update("Signed out")

    @staticmethod
    def describe(state: ConnectionState) -> str:
        if state.is_starting:
            return "Connecting…"
        if not state.connected:
            parts = [f"Status: {state.status}"]
        else:
            latency = f"{state.latency_ms} ms" if state.latency_ms is not None else "-"
            parts = [
                f"Project: {state.connected_project_name or state.connected_project_id}",
                f"Database: {state.selected_database}",
                f"Role: {state.selected_role}",
                f"Status: {state.status} ({latency})",
            ]
        if state.last_error:
            reason = state.last_error.splitlines()[0][:80]
            parts.append(f"Error: {reason}")
        return " | ".join(parts)


__all__ = ["StatusBar"]
