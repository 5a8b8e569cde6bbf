"""Rich renderables shared by the TUI and the plain ``plan`` command."""

from __future__ import annotations

from typing import Mapping, Sequence

from rich.text import Text
from rich.tree import Tree

from unisonui.core.model import Action, Importance, Item, Message
from unisonui.core.tree import PlanNode, SortRule, describe_action, describe_content, fold

IMPORTANCE_STYLES: dict[Importance, str] = {
    Importance.INFO: "",
    Importance.WARNING: "yellow",
    Importance.ERROR: "bold red",
}

ACTION_STYLES: dict[Action, str] = {
    Action.SKIP: "yellow",
    Action.LEFT_TO_RIGHT: "green",
    Action.RIGHT_TO_LEFT: "green",
    Action.MAYBE_LEFT_TO_RIGHT: "cyan",
    Action.MAYBE_RIGHT_TO_LEFT: "cyan",
    Action.MERGE: "magenta",
    Action.MIXED: "dim",
    Action.ERROR: "bold red",
}

ENTIRE_REPLICA = "(entire replica)"
THIS_DIRECTORY = "."


def node_label(node: PlanNode, width: int = 40) -> Text:
    """One row of the plan: name, left change, action glyph, right change."""
    name = node.name or (THIS_DIRECTORY if node.path else ENTIRE_REPLICA)
    if not node.is_leaf:
        name += "/"
    label = Text(name.ljust(width), overflow="ellipsis", no_wrap=True)
    left = right = ""
    if node.item is not None:
        left = describe_content(node.item.left)
        right = describe_content(node.item.right)
    label.append(f" {left:>12} ")
    label.append(describe_action(node.action).center(7), style=ACTION_STYLES[node.action])
    label.append(f" {right:<12}")
    return label


def message_text(message: Message) -> Text:
    return Text(message.text, style=IMPORTANCE_STYLES[message.importance])


def progress_text(progress: str, fraction: float) -> str:
    if fraction >= 0 and progress:
        return progress
    if fraction >= 0:
        return f"{fraction:.0%}"
    return progress


def plan_tree(
    items: Sequence[Item],
    plan: Mapping[str, Action] | None = None,
    sort: SortRule | None = None,
    title: str = "",
) -> Tree:
    """The whole plan as a rich Tree, for printing outside the TUI."""
    root = fold(items, plan, sort)
    tree = Tree(Text(title, style="bold"), guide_style="dim")
    _add_children(tree, root)
    return tree


def _add_children(tree: Tree, node: PlanNode) -> None:
    for child in node.children:
        branch = tree.add(node_label(child))
        _add_children(branch, child)
