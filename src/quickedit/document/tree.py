"""Typed document tree abstraction and generic traversal algorithms.

The resolver never inspects host-specific structures directly; it walks a
``DocumentTree`` whose nodes are opaque to it. ``OutlineTree`` is an
in-memory implementation built from store rows (``Unit`` snapshots with
``parent_id``), used by the CLI and by tests.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol, TypeVar

from quickedit.models.unit import Unit


N = TypeVar("N")


class DocumentTree(Protocol[N]):
    """Read-only view of a document's node hierarchy."""

    def parent_of(self, node: N) -> Optional[N]:
        """Parent node, or None at the root."""
        ...

    def children_of(self, node: N) -> list[N]:
        """Children in document order."""
        ...

    def id_of(self, node: N) -> Optional[str]:
        """Unit identifier, or None for non-addressable nodes (text runs, wrappers)."""
        ...

    def unit_of(self, node: N) -> Optional[Unit]:
        """Unit snapshot for an addressable node."""
        ...

    def node(self, unit_id: str) -> Optional[N]:
        """Addressable node for ``unit_id``, if currently present."""
        ...


def find_enclosing_unit(tree: DocumentTree[N], node: Optional[N]) -> Optional[N]:
    """Walk up from ``node`` (inclusive) to the nearest addressable node."""
    current = node
    while current is not None:
        if tree.id_of(current) is not None:
            return current
        current = tree.parent_of(current)
    return None


def ancestors(tree: DocumentTree[N], node: N) -> list[N]:
    """Ancestors of ``node`` from its parent up to the root."""
    result = []
    current = tree.parent_of(node)
    while current is not None:
        result.append(current)
        current = tree.parent_of(current)
    return result


def common_ancestor(tree: DocumentTree[N], a: N, b: N) -> Optional[N]:
    """Nearest node that has both ``a`` and ``b`` as (inclusive) descendants."""
    chain_a = [a] + ancestors(tree, a)
    for candidate in [b] + ancestors(tree, b):
        if any(candidate is node for node in chain_a):
            return candidate
    return None


def tree_root(tree: DocumentTree[N], node: N) -> N:
    """Topmost ancestor of ``node`` (``node`` itself at the root)."""
    chain = ancestors(tree, node)
    return chain[-1] if chain else node


def document_order(tree: DocumentTree[N], root: N) -> list[N]:
    """Pre-order list of addressable nodes under ``root`` (inclusive)."""
    result = []
    stack = [root]
    while stack:
        node = stack.pop()
        if tree.id_of(node) is not None:
            result.append(node)
        stack.extend(reversed(tree.children_of(node)))
    return result


def _index_of(nodes: list[N], node: N) -> int:
    for index, candidate in enumerate(nodes):
        if candidate is node:
            return index
    return -1


def _drop_nested(tree: DocumentTree[N], nodes: list[N]) -> list[N]:
    """Keep only nodes that do not descend from another node in the list."""
    kept = []
    for node in nodes:
        if not any(_index_of(nodes, parent) >= 0 for parent in ancestors(tree, node)):
            kept.append(node)
    return kept


def units_between(tree: DocumentTree[N], start: N, end: N) -> list[N]:
    """
    Enumerate the addressable units from ``start`` to ``end``, inclusive.

    Siblings are enumerated through their shared parent. Otherwise the
    nearest common ancestor's addressable descendants between the two are
    used, dropping units nested inside another returned unit. Reversed
    anchors (end before start) are normalized.

    Args:
        tree: Document tree
        start: Addressable node where the selection starts
        end: Addressable node where the selection ends

    Returns:
        Units in document order; ``[start, end]`` if no common ancestor exists
    """
    if start is end:
        return [start]

    parent = tree.parent_of(start)
    if parent is not None and parent is tree.parent_of(end):
        siblings = [c for c in tree.children_of(parent) if tree.id_of(c) is not None]
        i, j = _index_of(siblings, start), _index_of(siblings, end)
        if i >= 0 and j >= 0:
            if i > j:
                i, j = j, i
            return siblings[i:j + 1]

    container = common_ancestor(tree, start, end)
    if container is None:
        return [start, end]

    ordered = document_order(tree, container)
    i, j = _index_of(ordered, start), _index_of(ordered, end)
    if i < 0 or j < 0:
        return [start, end]
    if i > j:
        i, j = j, i
    span = ordered[i:j + 1]
    # Units enclosing the selection, not inside it
    span = [n for n in span if not any(n is a for a in ancestors(tree, ordered[j]))] or span
    return _drop_nested(tree, span)


@dataclass(eq=False)
class TreeNode:
    """Node of an ``OutlineTree``.

    Addressable nodes carry a ``unit``; text nodes carry only ``text``.
    """

    unit: Optional[Unit] = None
    text: str = ""
    parent: Optional["TreeNode"] = field(default=None, repr=False)
    children: list["TreeNode"] = field(default_factory=list, repr=False)

    @property
    def id(self) -> Optional[str]:
        return self.unit.id if self.unit else None

    def add(self, child: "TreeNode") -> "TreeNode":
        child.parent = self
        self.children.append(child)
        return child


class OutlineTree:
    """In-memory ``DocumentTree`` over ``TreeNode`` objects.

    Example:
        >>> tree = OutlineTree.from_units(units, root_id="20251028234416-aw9bzvx")
        >>> node = tree.node("20251028234420-bbbbbbb")
        >>> find_enclosing_unit(tree, node) is node
        True
    """

    def __init__(self, root: TreeNode):
        self.root = root
        self._by_id: dict[str, TreeNode] = {}
        for node in document_order(self, root):
            self._by_id[node.id] = node

    @classmethod
    def from_units(cls, units: Iterable[Unit], root_id: Optional[str] = None) -> "OutlineTree":
        """
        Build a tree from store rows linked by ``parent_id``.

        Rows are attached in ``sort`` order; rows whose parent is unknown are
        attached to the root. The document row (``id == root_id``) becomes
        the root when present.
        """
        units = sorted(units, key=lambda u: (u.sort is None, u.sort or 0))
        nodes = {u.id: TreeNode(unit=u) for u in units}
        root = nodes.pop(root_id) if root_id in nodes else TreeNode()
        for unit in units:
            if unit.id == root_id:
                continue
            parent = nodes.get(unit.parent_id) if unit.parent_id else None
            (parent or root).add(nodes[unit.id])
        return cls(root)

    def node(self, unit_id: str) -> Optional[TreeNode]:
        """Look up an addressable node by unit id."""
        return self._by_id.get(unit_id)

    def parent_of(self, node: TreeNode) -> Optional[TreeNode]:
        return node.parent

    def children_of(self, node: TreeNode) -> list[TreeNode]:
        return list(node.children)

    def id_of(self, node: TreeNode) -> Optional[str]:
        return node.id

    def unit_of(self, node: TreeNode) -> Optional[Unit]:
        return node.unit
