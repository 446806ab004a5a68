"""Sign-in surface shown whenever no credential is active."""

from __future__ import annotations

from textual import on
from textual.app import ComposeResult
from textual.containers import Container
from textual.widgets import Button, Input, Static


class SignInPanel(Container):
    """Prompts for a personal API token."""

    DEFAULT_CSS = """
    SignInPanel {
        padding: 1 2;
        height: auto;
    }

    SignInPanel #sign-in-message {
        color: $warning;
        margin-bottom: 1;
    }
    """

    def __init__(self) -> None:
        super().__init__(id="sign-in")

    def compose(self) -> ComposeResult:
        yield Static("Sign in with a personal API token to browse your branches.", classes="sign-in-heading")
        yield Static("", id="sign-in-message")
        yield Input(placeholder="API token", password=True, id="token-input")
        yield Button("Import token", id="import-token", variant="primary")

    def show_message(self, message: str | None) -> None:
        if not self.is_mounted:
            return
        self.query_one("#sign-in-message", Static).update(message or "")

    @on(Input.Submitted, "#token-input")
    def _submitted(self, event: Input.Submitted) -> None:
        event.stop()
        self._submit(event.value)

    @on(Button.Pressed, "#import-token")
    def _pressed(self, event: Button.Pressed) -> None:
        event.stop()
        self._submit(self.query_one("#token-input", Input).value)

    def _submit(self, value: str) -> None:
        token = value.strip()
        if not token:
            self.show_message("Enter a token first.")
            return
        self.query_one("#token-input", Input).value = ""
        dispatcher = getattr(self.app, "dispatch_intent", None)
        if dispatcher is not None:
            dispatcher("import_token", token=token)


__all__ = ["SignInPanel"]
