"""Modal screens: Unison's alerts and our own confirmations."""

from __future__ import annotations

from rich.markup import escape
from textual.app import ComposeResult
from textual.containers import Container, Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Static

from unisonui.core.model import Alert, AlertKind, Importance


class ConfirmScreen(ModalScreen[bool]):
    """Ask a yes/no question. Dismisses with True for yes."""

    BINDINGS = [
        ("escape", "cancel", "Cancel"),
        ("left", "focus_other", "Prev"),
        ("right", "focus_other", "Next"),
        ("y", "confirm", "Yes"),
        ("n", "cancel", "No"),
    ]
    CSS = """
    #dialog-root {
        width: 100%;
        height: 100%;
        align: center middle;
    }
    #dialog-box {
        width: 72;
        max-height: 80%;
        height: auto;
        border: round $primary;
        padding: 1 2;
    }
    #dialog-box.warning {
        border: round $warning;
    }
    #dialog-box.error {
        border: round $error;
    }
    #dialog-text {
        height: auto;
        max-height: 20;
        overflow-y: auto;
        margin-bottom: 1;
    }
    #dialog-buttons {
        height: auto;
        align: right middle;
    }
    """

    def __init__(
        self,
        text: str,
        yes_label: str = "Yes",
        no_label: str = "No",
        importance: Importance = Importance.INFO,
        default_yes: bool = False,
    ) -> None:
        super().__init__()
        self.text = text
        self.yes_label = yes_label
        self.no_label = no_label
        self.importance = importance
        self.default_yes = default_yes

    def compose(self) -> ComposeResult:
        with Container(id="dialog-root"):
            with Vertical(id="dialog-box", classes=self.importance.value):
                yield Static(escape(self.text), id="dialog-text")
                with Horizontal(id="dialog-buttons"):
                    yield Button(self.no_label, id="no")
                    yield Button(self.yes_label, id="yes", variant="primary")

    def on_mount(self) -> None:
        self.query_one("#yes" if self.default_yes else "#no", Button).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "yes")

    def action_confirm(self) -> None:
        self.dismiss(True)

    def action_cancel(self) -> None:
        self.dismiss(False)

    def action_focus_other(self) -> None:
        yes = self.query_one("#yes", Button)
        if yes.has_focus:
            self.query_one("#no", Button).focus()
        else:
            yes.focus()


class AlertScreen(ConfirmScreen):
    """A prompt from Unison: proceed, or abort (which quits Unison)."""

    def __init__(self, alert: Alert) -> None:
        yes_label = "Continue" if alert.kind is AlertKind.CONTINUE else "Proceed"
        super().__init__(
            alert.text,
            yes_label=yes_label,
            no_label="Abort",
            importance=alert.importance,
            default_yes=alert.kind is AlertKind.CONTINUE,
        )
        self.alert = alert
