"""Document store interface consumed by the edit engine.

The store is the only shared mutable resource. The engine reaches it only
through these CRUD calls; failures are raised as ``StoreError``.
"""

from typing import Literal, Optional, Protocol

from quickedit.models.unit import Unit


Direction = Literal["above", "below"]


class DocumentStore(Protocol):
    """Block-oriented CRUD API of the host document store."""

    async def get_unit(self, unit_id: str) -> Optional[Unit]:
        """Fetch one unit (content, type, subtype, root_id, sort); None if missing."""
        ...

    async def query_units(
        self,
        root_id: str,
        sort: int,
        direction: Direction,
        limit: int,
        exclude_id: Optional[str] = None,
    ) -> list[Unit]:
        """
        Structured query for units of a document before or after a sort key.

        Returns at most ``limit`` units nearest to ``sort``, in document order.
        """
        ...

    async def list_units(self, root_id: str) -> list[Unit]:
        """All units of a document in document order."""
        ...

    async def insert_unit(self, content: str, anchor_id: str) -> str:
        """Insert markdown as a new unit after ``anchor_id``; returns the new id."""
        ...

    async def batch_insert_units(self, contents: list[str], anchor_id: str) -> list[str]:
        """
        Insert several units after ``anchor_id`` in one call.

        Raises ``StoreError`` only when nothing was written. After a
        successful call it returns the new ids the backend reported, in
        order; that list can be shorter than ``contents``.
        """
        ...

    async def delete_unit(self, unit_id: str) -> None:
        """Delete one unit."""
        ...

    async def batch_delete_units(self, unit_ids: list[str]) -> None:
        """Delete several units in one transaction."""
        ...

    async def update_unit(self, unit_id: str, content: str) -> None:
        """Replace a unit's content with markdown."""
        ...

    async def supports_batch_insert(self) -> bool:
        """Whether the backend supports batch insert (cached by implementations)."""
        ...
