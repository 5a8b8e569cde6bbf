"""Main Textual application for unisonui."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import typer
from rich.markup import escape
from textual import work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.timer import Timer
from textual.widgets import Button, Footer, Header, Label, ProgressBar, Static, Tree
from textual.widgets.tree import TreeNode

from unisonui.core.engine import Phase
from unisonui.core.model import Action, Alert, Importance, Operation
from unisonui.core.tree import (
    PlanNode,
    SortColumn,
    SortRule,
    fold,
    leaves,
    path_is_ancestor,
    path_prefixes,
    with_action,
)
from unisonui.session.driver import (
    ABORT_PROMPT,
    INTERRUPT_PROMPT,
    KILL_PROMPT,
    CloseDecision,
    UnisonSession,
)
from unisonui.session.wire import EventType, WireEvent
from unisonui.tui.dialogs import AlertScreen, ConfirmScreen
from unisonui.tui.render import IMPORTANCE_STYLES, node_label, progress_text

logger = logging.getLogger(__name__)

# Braille spinner frames
_SPINNER = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]

_SORT_ORDER = [SortColumn.PATH, SortColumn.LEFT, SortColumn.ACTION, SortColumn.RIGHT]

_BUTTON_ACTIONS = {
    "sync-button": "sync",
    "abort-button": "abort",
    "kill-button": "kill",
    "close-button": "close",
}


class TUILogHandler(logging.Handler):
    """Logging handler that shows the last log message in the TUI status bar.

    Writing to stderr would corrupt the Textual display, so the most recent
    record is stored and a status bar refresh is scheduled on the app.
    """

    def __init__(self, app: UnisonApp) -> None:
        super().__init__()
        self._app = app
        self.last_message: str = ""

    def emit(self, record: logging.LogRecord) -> None:
        self.last_message = self.format(record)
        try:
            self._app.call_from_thread(self._app._update_status_bar)
        except RuntimeError:
            # Already on the app's thread (or the app is not running).
            self._app.call_later(self._app._update_status_bar)


class UnisonApp(App):
    """Review and run a Unison synchronization."""

    TITLE = "unisonui"
    CSS = """
    #main {
        height: 1fr;
        border: solid $primary;
    }

    #placeholder {
        padding: 1 2;
        color: $text-muted;
    }

    #plan {
        height: 1fr;
    }

    #progress-row {
        height: 1;
        padding: 0 1;
    }

    #spinner {
        width: 2;
    }

    #status {
        width: auto;
        margin-right: 2;
    }

    #progress-text {
        width: 1fr;
        color: $text-muted;
    }

    #infobar {
        height: auto;
        max-height: 6;
        padding: 0 1;
    }

    #buttons {
        height: auto;
        align: right middle;
    }

    #buttons Button {
        margin-left: 1;
    }

    #status-bar {
        height: 1;
        background: $surface;
        color: $text-muted;
        padding: 0 1;
    }
    """

    BINDINGS = [
        Binding("s", "sync", "Sync"),
        Binding("d", "diff", "Diff"),
        Binding("a", "abort", "Abort"),
        Binding("greater_than_sign", "set_action('left-to-right')", "Left→right"),
        Binding("less_than_sign", "set_action('right-to-left')", "Right→left"),
        Binding("slash", "set_action('skip')", "Skip"),
        Binding("m", "set_action('merge')", "Merge"),
        Binding("r", "set_action('recommended')", "Revert"),
        Binding("o", "cycle_sort", "Sort"),
        Binding("O", "reverse_sort", "Reverse", show=False),
        Binding("k", "kill", "Kill", show=False),
        Binding("q", "close", "Quit"),
        Binding("ctrl+c", "close", "Quit", show=False, priority=True),
    ]

    def __init__(self, session: UnisonSession) -> None:
        super().__init__()
        self.session = session
        self.wire = session.wire
        self._queue: asyncio.Queue[WireEvent | None] | None = None
        self._log_handler: TUILogHandler | None = None
        self._spinner_timer: Timer | None = None
        self._spinner_idx = 0
        self._sort: SortRule | None = None
        self._state: dict[str, Any] = session.state()

    def compose(self) -> ComposeResult:
        yield Header()
        with Vertical(id="main"):
            yield Static("Waiting for Unison to report its plan...", id="placeholder")
            tree: Tree[PlanNode] = Tree("plan", id="plan")
            tree.show_root = False
            tree.display = False
            yield tree
        with Horizontal(id="progress-row"):
            yield Static("", id="spinner")
            yield Label("", id="status")
            yield Label("", id="progress-text")
        yield ProgressBar(total=100, show_eta=False, show_percentage=False, id="progress")
        yield Static("", id="infobar")
        with Horizontal(id="buttons"):
            yield Button("Sync", id="sync-button", variant="primary")
            yield Button("Abort", id="abort-button", variant="warning")
            yield Button("Kill", id="kill-button", variant="error")
            yield Button("Close", id="close-button")
        yield Static(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        self._install_log_handler()
        # Subscribe before starting Unison so no event is missed.
        self._queue = self.wire.subscribe()
        self._render_state(self._state)
        self._listen_wire()
        self._run_session()

    def on_unmount(self) -> None:
        self.session.shutdown()

    def _install_log_handler(self) -> None:
        root = logging.getLogger()
        for handler in root.handlers[:]:
            root.removeHandler(handler)
        self._log_handler = TUILogHandler(self)
        self._log_handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        self._log_handler.setLevel(logging.INFO)
        root.addHandler(self._log_handler)

    # --- Status bar ---

    def _update_status_bar(self) -> None:
        try:
            bar = self.query_one("#status-bar", Static)
        except Exception:
            return
        last_log = ""
        if self._log_handler and self._log_handler.last_message:
            last_log = self._log_handler.last_message
            if len(last_log) > 100:
                last_log = last_log[:97] + "..."
        bar.update(f"[dim]{escape(last_log)}[/dim]")

    def _start_spinner(self) -> None:
        if self._spinner_timer is None:
            self._spinner_idx = 0
            self._spinner_timer = self.set_interval(0.08, self._tick_spinner)

    def _stop_spinner(self) -> None:
        if self._spinner_timer is not None:
            self._spinner_timer.stop()
            self._spinner_timer = None
        self.query_one("#spinner", Static).update("")

    def _tick_spinner(self) -> None:
        self._spinner_idx += 1
        frame = _SPINNER[self._spinner_idx % len(_SPINNER)]
        self.query_one("#spinner", Static).update(frame)

    # --- Session and wire ---

    @work(exclusive=False)
    async def _run_session(self) -> None:
        await self.session.start()

    @work(exclusive=True)
    async def _listen_wire(self) -> None:
        queue = self._queue
        assert queue is not None
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                self._handle_event(event)
        finally:
            self.wire.unsubscribe(queue)

    def _handle_event(self, event: WireEvent) -> None:
        handlers = {
            EventType.STATE: self._render_state,
            EventType.PLAN_READY: self._on_plan_ready,
            EventType.MESSAGE: self._on_message,
            EventType.ALERT: self._on_alert,
            EventType.DIFF: self._on_diff,
            EventType.PROGRESS: self._on_progress,
            EventType.ERROR: self._on_error,
            EventType.EXIT: self._on_exit,
        }
        handler = handlers.get(event.type)
        if handler is not None:
            handler(event.data)

    def _render_state(self, data: dict[str, Any]) -> None:
        self._state = data
        if data["left"] or data["right"]:
            self.sub_title = f"{data['left']} — {data['right']}"
        self.query_one("#status", Label).update(escape(data["status"]))
        if data["busy"]:
            self._start_spinner()
        else:
            self._stop_spinner()
        self._on_progress({"progress": data["progress"], "fraction": data["fraction"]})

        ops: frozenset[Operation] = data["operations"]
        self.query_one("#sync-button", Button).display = Operation.SYNC in ops
        self.query_one("#abort-button", Button).display = Operation.ABORT in ops
        self.query_one("#kill-button", Button).display = (
            data["want_quit"] and Operation.KILL in ops
        )
        self.query_one("#close-button", Button).display = not data["running"]

    def _on_progress(self, data: dict[str, Any]) -> None:
        fraction: float = data["fraction"]
        bar = self.query_one("#progress", ProgressBar)
        if fraction < 0:
            bar.update(total=None)
        else:
            bar.update(total=100, progress=fraction * 100)
        self.query_one("#progress-text", Label).update(
            escape(progress_text(data["progress"], fraction) if data["progress"] else "")
        )

    def _on_plan_ready(self, data: dict[str, Any]) -> None:
        items = data["items"] or ()
        placeholder = self.query_one("#placeholder", Static)
        tree = self.query_one("#plan", Tree)
        if not items:
            placeholder.update("Nothing to synchronize.")
            return
        placeholder.display = False
        tree.display = True
        self._rebuild_tree()
        tree.focus()

    def _on_message(self, data: dict[str, Any]) -> None:
        importance: Importance = data["importance"]
        style = IMPORTANCE_STYLES[importance]
        text = escape(data["text"])
        self.query_one("#infobar", Static).update(f"[{style}]{text}[/]" if style else text)
        if importance is Importance.ERROR:
            self.bell()

    def _on_error(self, data: dict[str, Any]) -> None:
        self._on_message({"text": data["error"], "importance": Importance.ERROR})

    def _on_alert(self, data: dict[str, Any]) -> None:
        alert: Alert = data["alert"]

        def answered(proceed: bool | None) -> None:
            if alert is self.session.engine.alert:
                self.session.answer(alert, bool(proceed))

        self.push_screen(AlertScreen(alert), callback=answered)

    def _on_diff(self, data: dict[str, Any]) -> None:
        path = data["path"]
        if self.session.config.ui.open_diffs:
            typer.launch(path)
        self.notify(f"Diff saved to {path}")

    def _on_exit(self, data: dict[str, Any]) -> None:
        if self.session.want_quit:
            self.exit(data.get("code"))

    # --- Plan tree ---

    def _rebuild_tree(self) -> None:
        items = self.session.engine.items
        if not items:
            return
        tree = self.query_one("#plan", Tree)
        cursor = tree.cursor_node.data.path if tree.cursor_node and tree.cursor_node.data else None
        tree.clear()
        root = fold(items, self.session.engine.plan, self._sort)
        tree.root.data = root
        self._populate(tree.root, root)
        tree.root.expand()
        if cursor is not None:
            # The node may have been regrouped away; fall back to its nearest
            # surviving ancestor.
            for path in reversed(path_prefixes(cursor)):
                if self._move_cursor(tree, tree.root, path):
                    break

    def _populate(self, tree_node: TreeNode[PlanNode], node: PlanNode) -> None:
        for child in node.children:
            if child.is_leaf:
                tree_node.add_leaf(node_label(child), data=child)
            else:
                branch = tree_node.add(node_label(child), data=child, expand=True)
                self._populate(branch, child)

    def _move_cursor(self, tree: Tree, tree_node: TreeNode[PlanNode], path: str) -> bool:
        for child in tree_node.children:
            node = child.data
            if node is None:
                continue
            if node.path == path:
                tree.move_cursor(child)
                return True
            if path_is_ancestor(node.path, path) and self._move_cursor(tree, child, path):
                return True
        return False

    def _selected(self) -> PlanNode | None:
        tree = self.query_one("#plan", Tree)
        if not tree.display or tree.cursor_node is None:
            return None
        return tree.cursor_node.data

    # --- Actions ---

    def _enabled(self, op: Operation) -> bool:
        if self.session.engine.enabled(op):
            return True
        self.bell()
        return False

    def action_sync(self) -> None:
        if self._enabled(Operation.SYNC):
            self.session.perform(Operation.SYNC)

    def action_diff(self) -> None:
        node = self._selected()
        if node is None or not node.is_leaf:
            self.notify("Select a file to diff", severity="warning")
            return
        if self._enabled(Operation.DIFF):
            self.session.perform(Operation.DIFF, node.path)

    def action_abort(self) -> None:
        if not self._enabled(Operation.ABORT):
            return

        def confirmed(yes: bool | None) -> None:
            if yes and self.session.engine.enabled(Operation.ABORT):
                self.session.perform(Operation.ABORT)

        self.push_screen(ConfirmScreen(ABORT_PROMPT, "Abort", "Continue"), callback=confirmed)

    def action_kill(self) -> None:
        if not self._enabled(Operation.KILL):
            return
        self._confirm_stop(KILL_PROMPT, Operation.KILL)

    def action_close(self) -> None:
        decision = self.session.close_requested()
        if decision is CloseDecision.CLOSE:
            self.exit(self.session.exit_code)
        elif decision is CloseDecision.CONFIRM_INTERRUPT:
            self._confirm_stop(INTERRUPT_PROMPT, Operation.INTERRUPT)
        elif decision is CloseDecision.CONFIRM_KILL:
            self._confirm_stop(KILL_PROMPT, Operation.KILL)

    def _confirm_stop(self, prompt: str, op: Operation) -> None:
        def confirmed(yes: bool | None) -> None:
            if yes and self.session.engine.enabled(op):
                self.session.perform(op)

        self.push_screen(
            ConfirmScreen(prompt, importance=Importance.WARNING), callback=confirmed
        )

    def action_set_action(self, value: str) -> None:
        node = self._selected()
        engine = self.session.engine
        if node is None or engine.phase is not Phase.READY or engine.alert is not None:
            self.bell()
            return
        if value == "recommended":
            plan = dict(engine.plan)
            for leaf in leaves(node):
                assert leaf.item is not None
                plan[leaf.path] = leaf.item.action
        else:
            plan = with_action(engine.plan, [node], Action(value))
        self.session.update_plan(plan)
        self._rebuild_tree()

    def action_cycle_sort(self) -> None:
        if self._sort is None:
            self._sort = SortRule(_SORT_ORDER[1])
        else:
            i = _SORT_ORDER.index(self._sort.column)
            column = _SORT_ORDER[(i + 1) % len(_SORT_ORDER)]
            self._sort = None if column is SortColumn.PATH else SortRule(column)
        self.notify(f"Sorted by {self._sort.column.value if self._sort else 'plan order'}")
        self._rebuild_tree()

    def action_reverse_sort(self) -> None:
        current = self._sort or SortRule(SortColumn.PATH)
        self._sort = SortRule(current.column, not current.descending)
        self._rebuild_tree()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        action = _BUTTON_ACTIONS.get(event.button.id or "")
        if action is not None:
            getattr(self, f"action_{action}")()
