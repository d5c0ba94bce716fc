"""
An in-memory outline document: nodes with a text value and ordered children.

The scope engine only reads nodes and creates/inserts new ones; it learns
about edits through ``subscribe``. Edits made inside ``batch()`` are
reported once when the outermost batch exits.
"""

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)


@dataclass
class Node:
    id: str
    value: str = ""
    children: List[str] = field(default_factory=list)


class Document:
    def __init__(self):
        self.nodes: Dict[str, Node] = {}
        self._subscribers: List[Callable[['Document'], None]] = []
        self._batch_depth = 0
        self._dirty = False

    # --- Reads ---

    def get_node(self, node_id: str) -> Optional[Node]:
        return self.nodes.get(node_id)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self.nodes

    def parent_of(self, node_id: str) -> Optional[str]:
        for node in self.nodes.values():
            if node_id in node.children:
                return node.id
        return None

    # --- Writes ---

    def create_node(self, value: str = "", children: Optional[List[str]] = None,
                    node_id: Optional[str] = None) -> Node:
        node_id = node_id or uuid.uuid4().hex[:12]
        if node_id in self.nodes:
            raise ValueError(f"Node '{node_id}' already exists")
        node = Node(node_id, value, list(children or []))
        self.nodes[node_id] = node
        self._changed()
        return node

    def set_value(self, node_id: str, value: str):
        self._require(node_id).value = value
        self._changed()

    def insert_child(self, parent_id: str, child_id: str, index: Optional[int] = None):
        parent = self._require(parent_id)
        self._require(child_id)
        if index is None:
            parent.children.append(child_id)
        else:
            parent.children.insert(index, child_id)
        self._changed()

    def remove_child(self, parent_id: str, child_id: str):
        parent = self._require(parent_id)
        parent.children.remove(child_id)
        self._changed()

    def move_child(self, parent_id: str, child_id: str, index: int):
        parent = self._require(parent_id)
        parent.children.remove(child_id)
        parent.children.insert(index, child_id)
        self._changed()

    def _require(self, node_id: str) -> Node:
        node = self.nodes.get(node_id)
        if node is None:
            raise KeyError(node_id)
        return node

    # --- Change notification ---

    def subscribe(self, handler: Callable[['Document'], None]) -> Callable[[], None]:
        self._subscribers.append(handler)

        def unsubscribe():
            if handler in self._subscribers:
                self._subscribers.remove(handler)
        return unsubscribe

    @contextmanager
    def batch(self):
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._dirty:
                self._notify()

    def _changed(self):
        self._dirty = True
        if self._batch_depth == 0:
            self._notify()

    def _notify(self):
        self._dirty = False
        for handler in list(self._subscribers):
            handler(self)

    # --- Loading ---

    @classmethod
    def from_dict(cls, nodes: Dict[str, Dict]) -> 'Document':
        """Builds a document from ``{id: {value, children}}`` (or ``{id: "text"}``)."""
        doc = cls()
        for node_id, entry in (nodes or {}).items():
            node_id = str(node_id)
            if isinstance(entry, dict):
                value = entry.get('value', '')
                children = [str(c) for c in entry.get('children') or []]
            else:
                value, children = entry, []
            doc.nodes[node_id] = Node(node_id, '' if value is None else str(value), children)
        return doc

    @classmethod
    def load_yaml(cls, path) -> tuple['Document', Optional[str]]:
        """Loads an outline file; returns the document and its declared root id."""
        data = yaml.safe_load(Path(path).read_text(encoding='utf-8')) or {}
        doc = cls.from_dict(data.get('nodes') or {})
        root = data.get('root')
        logger.debug("Loaded %d nodes from %s", len(doc.nodes), path)
        return doc, (str(root) if root is not None else None)
