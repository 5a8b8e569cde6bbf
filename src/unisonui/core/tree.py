"""Fold the flat plan into a tree for display.

Folding is contiguity-preserving: leaves keep the order of the (optionally
sorted) item list, and a directory node is only created for a contiguous
run of at least two entries sharing a leading path segment. A lone entry is
promoted into its parent with the segment names joined by ``/``.

Joining the non-empty names from the root down to a leaf gives the leaf's
path. A directory listed next to its own contents becomes a leaf with an
empty name under the node for that directory.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, Iterator, Mapping, Sequence

from unisonui.core.model import Action, Content, ContentStatus, ContentType, Item


class SortColumn(enum.Enum):
    PATH = "path"
    LEFT = "left"
    RIGHT = "right"
    ACTION = "action"


@dataclass(frozen=True)
class SortRule:
    column: SortColumn = SortColumn.PATH
    descending: bool = False


@dataclass(frozen=True)
class PlanNode:
    name: str
    path: str
    item: Item | None = None  # set on leaves only
    action: Action = Action.SKIP
    children: tuple[PlanNode, ...] = ()

    @property
    def is_leaf(self) -> bool:
        return self.item is not None


ACTION_GLYPHS: dict[Action, str] = {
    Action.SKIP: "◀─?─▶",
    Action.LEFT_TO_RIGHT: "────▶",
    Action.MAYBE_LEFT_TO_RIGHT: "──?─▶",
    Action.RIGHT_TO_LEFT: "◀────",
    Action.MAYBE_RIGHT_TO_LEFT: "◀─?──",
    Action.MERGE: "◀─M─▶",
    Action.MIXED: "mixed",
    Action.ERROR: "error",
}

_CHANGED = {
    ContentType.FILE: "changed",
    ContentType.SYMLINK: "changed link",
    ContentType.DIRECTORY: "changed dir",
}
_CREATED = {
    ContentType.FILE: "new file",
    ContentType.SYMLINK: "new link",
    ContentType.DIRECTORY: "new dir",
}


def describe_action(action: Action) -> str:
    return ACTION_GLYPHS[action]


def describe_content(content: Content) -> str:
    """Short description of one side, as shown in the plan columns."""
    if content.status is ContentStatus.UNCHANGED:
        return ""
    if content.status is ContentStatus.PROPS_CHANGED:
        return "props"
    if content.status is ContentStatus.DELETED:
        return "deleted"
    table = _CREATED if content.status is ContentStatus.CREATED else _CHANGED
    return table.get(content.type, "")


def _segments(path: str) -> list[str]:
    return [seg for seg in path.split("/") if seg]


def path_prefixes(path: str) -> list[str]:
    """Prefixes of ``path`` made of whole segments, from ``""`` to the path itself."""
    segs = _segments(path)
    return ["/".join(segs[:i]) for i in range(len(segs) + 1)]


def path_is_ancestor(ancestor: str, path: str) -> bool:
    """True if ``ancestor`` is a proper ancestor of ``path`` (``""`` is the root)."""
    if ancestor == "":
        return path != ""
    return path.startswith(ancestor + "/")


def _sort_key(column: SortColumn, plan: Mapping[str, Action]):
    if column is SortColumn.LEFT:
        return lambda item: describe_content(item.left)
    if column is SortColumn.RIGHT:
        return lambda item: describe_content(item.right)
    if column is SortColumn.ACTION:
        return lambda item: describe_action(plan.get(item.path, item.action))
    return lambda item: item.path


def fold(
    items: Sequence[Item],
    plan: Mapping[str, Action] | None = None,
    sort: SortRule | None = None,
) -> PlanNode:
    """Build the display tree for ``items``.

    ``plan`` overrides the per-item actions. With ``sort`` the items are
    stably sorted first; ``None`` keeps the plan order.
    """
    plan = plan or {}
    ordered = list(items)
    if sort is not None:
        # sorted() stays stable with reverse=True
        ordered = sorted(ordered, key=_sort_key(sort.column, plan), reverse=sort.descending)
    entries = [(_segments(item.path), item) for item in ordered]
    children = _fold_level(entries, 0, [], plan)
    return PlanNode(name="", path="", action=_aggregate(children), children=tuple(children))


def _fold_level(
    entries: list[tuple[list[str], Item]],
    depth: int,
    prefix: list[str],
    plan: Mapping[str, Action],
) -> list[PlanNode]:
    nodes: list[PlanNode] = []
    i = 0
    while i < len(entries):
        segs, item = entries[i]
        if len(segs) == depth:
            # The directory itself, listed next to its contents. Its parent
            # node already carries the name.
            nodes.append(_leaf(item, "", plan))
            i += 1
            continue

        key = segs[depth]
        j = i + 1
        while j < len(entries) and len(entries[j][0]) > depth and entries[j][0][depth] == key:
            j += 1
        run = entries[i:j]
        i = j

        if len(run) == 1:
            nodes.append(_leaf(item, "/".join(segs[depth:]), plan))
            continue

        sub = _fold_level(run, depth + 1, prefix + [key], plan)
        if len(sub) == 1:
            only = sub[0]
            nodes.append(_rename(only, key + "/" + only.name if only.name else key))
        else:
            nodes.append(
                PlanNode(
                    name=key,
                    path="/".join(prefix + [key]),
                    action=_aggregate(sub),
                    children=tuple(sub),
                )
            )
    return nodes


def _leaf(item: Item, name: str, plan: Mapping[str, Action]) -> PlanNode:
    return PlanNode(
        name=name,
        path=item.path,
        item=item,
        action=plan.get(item.path, item.action),
    )


def _rename(node: PlanNode, name: str) -> PlanNode:
    return PlanNode(
        name=name,
        path=node.path,
        item=node.item,
        action=node.action,
        children=node.children,
    )


def _aggregate(children: Sequence[PlanNode]) -> Action:
    actions = {child.action for child in children}
    if len(actions) == 1:
        return actions.pop()
    if not actions:
        return Action.SKIP
    return Action.MIXED


def leaves(node: PlanNode) -> Iterator[PlanNode]:
    """Leaf nodes under ``node`` (itself included), in display order."""
    if node.is_leaf:
        yield node
    for child in node.children:
        yield from leaves(child)


def leaf_paths(node: PlanNode) -> list[str]:
    return [leaf.path for leaf in leaves(node)]


def with_action(
    plan: Mapping[str, Action], nodes: Iterable[PlanNode], action: Action
) -> dict[str, Action]:
    """A copy of ``plan`` with every leaf under ``nodes`` set to ``action``."""
    if action is Action.MIXED:
        raise ValueError("mixed is not an action Unison can perform")
    result = dict(plan)
    for node in nodes:
        for path in leaf_paths(node):
            result[path] = action
    return result
