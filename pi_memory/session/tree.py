"""Navigation over the entry forest: paths, leaves, branches and labels."""

from __future__ import annotations

from dataclasses import dataclass, field

from pi_memory.logging import get_logger
from pi_memory.session.entries import Entry, NewEntry, label_entry
from pi_memory.session.store import EntryStore

logger = get_logger(__name__)


@dataclass
class TreeNode:
    """Defensive copy of one node of the forest, with its labels."""

    entry: Entry
    children: list[TreeNode] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)


class TreeNavigator:
    """
    Read and extend the parent/child structure of an :class:`EntryStore`.

    Label entries hang off the entry they name but never become the leaf,
    so labelling never changes which path the conversation continues on.
    """

    def __init__(self, store: EntryStore) -> None:
        self.store = store

    def path_to(self, leaf_id: str) -> list[Entry]:
        """Entries from the root down to *leaf_id*, inclusive."""
        path: list[Entry] = []
        current: Entry | None = self.store.get(leaf_id)
        while current is not None:
            path.append(current)
            current = self.store.get(current.parent_id) if current.parent_id else None
        path.reverse()
        return path

    def leaf(self) -> Entry | None:
        """The entry the conversation continues from."""
        if self.store.leaf_id is not None:
            return self.store.find(self.store.leaf_id)
        for entry in reversed(self.store.all()):
            if entry.kind != "label":
                return entry
        return None

    def active_path(self) -> list[Entry]:
        leaf = self.leaf()
        return self.path_to(leaf.id) if leaf else []

    def children(self, entry_id: str) -> list[Entry]:
        return self.store.children(entry_id)

    def leaves(self) -> list[Entry]:
        """Non-label entries without non-label children, in append order."""
        out: list[Entry] = []
        for entry in self.store.all():
            if entry.kind == "label":
                continue
            if not any(child.kind != "label" for child in self.store.children(entry.id)):
                out.append(entry)
        return out

    def append(self, entry: NewEntry) -> str:
        """Append under the current leaf and make the new entry the leaf."""
        leaf = self.leaf()
        return self.store.append(entry.with_parent(leaf.id if leaf else None), move_leaf=True)

    def branch(self, from_id: str, entry: NewEntry, *, move_leaf: bool = True) -> str:
        """Append *entry* as a new child of *from_id*, whichever entry that is."""
        self.store.get(from_id)
        new_id = self.store.append(entry.with_parent(from_id), move_leaf=move_leaf)
        logger.debug("session_branched", from_id=from_id, entry_id=new_id, move_leaf=move_leaf)
        return new_id

    def navigate(self, entry_id: str) -> None:
        """Point the leaf at *entry_id*."""
        self.store.set_leaf(entry_id)

    def label_entry(self, entry_id: str, name: str) -> str:
        self.store.get(entry_id)
        return self.store.append(label_entry(entry_id, name), move_leaf=False)

    def labels_on(self, entry_id: str) -> list[str]:
        return [
            child.label
            for child in self.store.children(entry_id)
            if child.kind == "label" and child.target_id == entry_id and child.label
        ]

    def tree(self) -> list[TreeNode]:
        """Return the whole forest, label entries folded into their targets."""
        nodes: dict[str, TreeNode] = {}
        roots: list[TreeNode] = []
        for entry in self.store.all():
            if entry.kind == "label":
                continue
            node = TreeNode(entry=entry, labels=self.labels_on(entry.id))
            nodes[entry.id] = node
            if entry.parent_id and entry.parent_id in nodes:
                nodes[entry.parent_id].children.append(node)
            else:
                roots.append(node)
        return roots
