"""Unit model: a snapshot of one addressable document block."""

from pydantic import BaseModel, Field
from typing import Optional


class Unit(BaseModel):
    """Read-only snapshot of an addressable unit (paragraph, heading, list item...)."""

    id: str = Field(
        ...,
        description="Unit identifier (e.g. 20251028234416-aw9bzvx)"
    )

    content: str = Field(
        default="",
        description="Unit text content (markdown)"
    )

    type: Optional[str] = Field(
        default=None,
        description="Node type, e.g. 'NodeHeading', 'NodeListItem', 'NodeParagraph'"
    )

    subtype: Optional[str] = Field(
        default=None,
        description="Node subtype, e.g. 'h2' for headings, 'u'/'o'/'t' for list items"
    )

    root_id: Optional[str] = Field(
        default=None,
        description="Identifier of the document containing the unit"
    )

    parent_id: Optional[str] = Field(
        default=None,
        description="Identifier of the parent unit, if any"
    )

    sort: Optional[int] = Field(
        default=None,
        description="Document-order sort key reported by the store"
    )

    model_config = {"frozen": True}
