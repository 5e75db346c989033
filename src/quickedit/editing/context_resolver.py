"""Selection resolution and context placeholder expansion.

Placeholders:
- ``{above=N}`` - the N text lines before the selection
- ``{below=N}`` - the N text lines after the selection
- ``{above_units=N}`` - the N units before the first selected unit
- ``{below_units=N}`` - the N units after the last selected unit
"""

import re
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from quickedit.document.store import Direction, DocumentStore
from quickedit.document.tree import (
    DocumentTree,
    document_order,
    find_enclosing_unit,
    tree_root,
    units_between,
)
from quickedit.models.edit_context import EditContext, PlaceholderSpec, ResolvedContext
from quickedit.models.unit import Unit
from quickedit.services.exceptions import InvalidUnitIdError, StoreError
from quickedit.utils.ids import validate_unit_id


logger = structlog.get_logger()

PLACEHOLDER_PATTERN = re.compile(r"\{(above|below|above_units|below_units)=(\d+)\}")

MIN_CONTEXT_COUNT = 1
MAX_CONTEXT_COUNT = 100

_INDENT = re.compile(r"^[ \t]*")


def clamp_count(count: int) -> int:
    """Clamp a placeholder count to the safe query range."""
    return max(MIN_CONTEXT_COUNT, min(MAX_CONTEXT_COUNT, count))


@dataclass
class TextRange:
    """A host text selection, anchored at two tree nodes."""

    start_node: Any
    end_node: Any
    text: str
    start_offset: int = 0
    end_offset: int = 0
    line_prefix: str = ""  # Text of the start line before the selection


@dataclass
class SelectionSource:
    """Snapshot of the host selection state handed to ``trigger_edit``."""

    selected_nodes: list[Any] = field(default_factory=list)
    range: Optional[TextRange] = None
    cursor: Any = None


def parse_placeholders(template: str) -> list[PlaceholderSpec]:
    """
    Find every context placeholder in a template.

    Counts are clamped to 1..100.

    Example:
        >>> [(p.direction, p.granularity, p.count) for p in parse_placeholders("{above=3} x {below_units=250}")]
        [('above', 'line', 3), ('below', 'unit', 100)]
    """
    specs = []
    for match in PLACEHOLDER_PATTERN.finditer(template):
        kind, count = match.group(1), int(match.group(2))
        specs.append(PlaceholderSpec(
            original=match.group(0),
            count=clamp_count(count),
            direction="above" if kind.startswith("above") else "below",
            granularity="unit" if kind.endswith("_units") else "line",
            start=match.start(),
            length=len(match.group(0)),
        ))
    return specs


def has_placeholders(template: str) -> bool:
    return PLACEHOLDER_PATTERN.search(template) is not None


def apply_placeholders(template: str, resolved: ResolvedContext) -> str:
    """
    Substitute every placeholder with its resolved content, literally.

    Unresolved placeholders become empty strings. Substituted content is
    never rescanned, so text that happens to look like a placeholder
    survives unchanged.
    """
    return PLACEHOLDER_PATTERN.sub(lambda m: resolved.content_for(m.group(0)), template)


def _join_units(units: list[Unit]) -> str:
    return "\n\n".join(u.content for u in units if u.content)


class ContextResolver:
    """
    Resolve host selections into ``EditContext`` snapshots and expand
    context placeholders.

    Sibling lookup prefers the store's structured query, which does not
    depend on what is currently rendered, and falls back to walking the
    document tree when the query fails or returns nothing.
    """

    def __init__(self, store: DocumentStore, tree: Optional[DocumentTree] = None):
        self.store = store
        self.tree = tree

    # Selection

    def resolve_selection(self, source: SelectionSource) -> Optional[EditContext]:
        """
        Resolve a selection into an ``EditContext``.

        Tried in order: structural multi-unit selection, text range, cursor.

        Returns:
            The context, or None if no non-empty text can be resolved
        """
        if self.tree is None:
            logger.warning("selection_unresolved", reason="no_document_tree")
            return None

        context = (
            self._from_structural(source)
            or self._from_range(source)
            or self._from_cursor(source)
        )
        if context is None:
            logger.info("selection_unresolved", reason="no_text")
        else:
            logger.info(
                "selection_resolved",
                unit_count=len(context.selected_unit_ids),
                primary_unit_id=context.primary_unit_id,
                text_length=len(context.selected_text),
            )
        return context

    def _from_structural(self, source: SelectionSource) -> Optional[EditContext]:
        units = []
        for node in source.selected_nodes:
            enclosing = find_enclosing_unit(self.tree, node)
            if enclosing is not None and not any(enclosing is u for u in units):
                units.append(enclosing)
        if not units:
            return None

        # Document order, regardless of the order the host reported them in
        order = document_order(self.tree, tree_root(self.tree, units[0]))
        positions = {id(node): i for i, node in enumerate(order)}
        units.sort(key=lambda node: positions.get(id(node), len(order)))
        return self._build_from_units(units)

    def _from_range(self, source: SelectionSource) -> Optional[EditContext]:
        selection = source.range
        if selection is None:
            return None
        start = find_enclosing_unit(self.tree, selection.start_node)
        end = find_enclosing_unit(self.tree, selection.end_node)
        if start is None:
            return None
        if end is None:
            end = start

        indent = _INDENT.match(selection.line_prefix).group(0)

        if start is end:
            if not selection.text.strip():
                return None
            unit = self.tree.unit_of(start)
            return EditContext(
                selected_text=selection.text,
                selected_unit_ids=[unit.id],
                primary_unit_id=unit.id,
                unit_type=unit.type,
                unit_subtype=unit.subtype,
                indent_prefix=indent,
                root_id=unit.root_id,
            )

        return self._build_from_units(units_between(self.tree, start, end), indent)

    def _from_cursor(self, source: SelectionSource) -> Optional[EditContext]:
        if source.cursor is None:
            return None
        node = find_enclosing_unit(self.tree, source.cursor)
        if node is None:
            return None
        return self._build_from_units([node])

    def _build_from_units(self, nodes: list[Any], indent: str = "") -> Optional[EditContext]:
        units = [self.tree.unit_of(node) for node in nodes]
        units = [u for u in units if u is not None and u.content.strip()]
        if not units:
            return None
        first = units[0]
        return EditContext(
            selected_text="\n\n".join(u.content.strip() for u in units),
            selected_unit_ids=[u.id for u in units],
            primary_unit_id=first.id,
            unit_type=first.type,
            unit_subtype=first.subtype,
            indent_prefix=indent,
            root_id=first.root_id,
        )

    async def build_context(self, source: SelectionSource, template: Optional[str] = None) -> Optional[EditContext]:
        """
        Resolve the selection and snapshot the context the template asks for.

        Returns:
            Context with ``placeholder_values``, ``context_before`` and
            ``context_after`` filled in, or None if nothing was selected
        """
        context = self.resolve_selection(source)
        if context is None or not template or not has_placeholders(template):
            return context

        resolved = await self.resolve_context(template, context.selected_unit_ids)
        return context.model_copy(update={
            "placeholder_values": dict(resolved.values),
            "context_before": resolved.above,
            "context_after": resolved.below,
        })

    # Context expansion

    async def get_context_units(self, unit_id: str, direction: Direction, count: int) -> list[Unit]:
        """
        Units adjacent to ``unit_id`` in document order.

        Args:
            unit_id: Anchor unit (validated before any query)
            direction: "above" or "below"
            count: Number of units wanted (clamped to 1..100)

        Returns:
            Up to ``count`` units in document order

        Raises:
            InvalidUnitIdError: If ``unit_id`` is malformed
        """
        safe_id = validate_unit_id(unit_id)
        limit = clamp_count(count)

        units: list[Unit] = []
        try:
            anchor = await self.store.get_unit(safe_id)
            if anchor is not None and anchor.root_id and anchor.sort is not None:
                units = await self.store.query_units(
                    anchor.root_id, anchor.sort, direction, limit, exclude_id=safe_id
                )
        except (StoreError, InvalidUnitIdError) as e:
            logger.warning("context_query_failed", unit_id=safe_id, direction=direction, error=str(e))

        if units:
            logger.debug("context_units_from_query", unit_id=safe_id, direction=direction, count=len(units))
            return units[:limit]

        units = self._sibling_units_from_tree(safe_id, direction, limit)
        logger.debug("context_units_from_tree", unit_id=safe_id, direction=direction, count=len(units))
        return units

    def _sibling_units_from_tree(self, unit_id: str, direction: Direction, limit: int) -> list[Unit]:
        if self.tree is None:
            return []
        node = self.tree.node(unit_id)
        if node is None:
            return []
        root = tree_root(self.tree, node)
        # The document itself is not context
        order = [n for n in document_order(self.tree, root) if n is not root]
        index = next((i for i, n in enumerate(order) if n is node), -1)
        if index < 0:
            return []
        if direction == "above":
            picked = order[max(0, index - limit):index]
        else:
            picked = order[index + 1:index + 1 + limit]
        return [u for u in (self.tree.unit_of(n) for n in picked) if u is not None]

    async def get_context_text(self, unit_id: str, direction: Direction, count: int) -> str:
        """Content of ``count`` adjacent units, joined by blank lines."""
        return _join_units(await self.get_context_units(unit_id, direction, count))

    async def get_context_lines(self, unit_id: str, direction: Direction, count: int) -> str:
        """
        The ``count`` text lines nearest the unit in ``direction``.

        Fetches ``count * 2`` units to have enough lines, then keeps the
        last ``count`` lines (above) or the first ``count`` lines (below).
        """
        count = clamp_count(count)
        units = await self.get_context_units(unit_id, direction, count * 2)
        lines = [line for unit in units for line in unit.content.split("\n")]
        picked = lines[-count:] if direction == "above" else lines[:count]
        return "\n".join(picked)

    async def resolve_context(self, template: str, unit_ids: list[str]) -> ResolvedContext:
        """
        Resolve every placeholder in ``template`` against the selection.

        ``above`` placeholders expand from the first selected unit and
        ``below`` placeholders from the last. A placeholder that fails to
        resolve yields empty content.
        """
        values: dict[str, str] = {}
        if not unit_ids:
            return ResolvedContext(values=values)

        first, last = unit_ids[0], unit_ids[-1]
        for spec in parse_placeholders(template):
            if spec.original in values:
                continue
            anchor = first if spec.direction == "above" else last
            try:
                if spec.granularity == "unit":
                    content = await self.get_context_text(anchor, spec.direction, spec.count)
                else:
                    content = await self.get_context_lines(anchor, spec.direction, spec.count)
            except InvalidUnitIdError as e:
                logger.warning("placeholder_unresolved", placeholder=spec.original, error=str(e))
                content = ""
            values[spec.original] = content
            logger.debug("placeholder_resolved", placeholder=spec.original, length=len(content))

        return ResolvedContext(values=values)

    async def process_template(self, template: str, unit_ids: list[str]) -> str:
        """Parse, resolve and apply all placeholders in one step."""
        if not has_placeholders(template):
            return template
        return apply_placeholders(template, await self.resolve_context(template, unit_ids))
