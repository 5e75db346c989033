"""Mutation plan models: what the executor will do to the document."""

from pydantic import BaseModel, Field, computed_field
from typing import Literal, Optional


class MutationStep(BaseModel):
    """A single document mutation."""

    op: Literal["insert_after", "delete"] = Field(
        ...,
        description="Insert a new unit after an anchor, or delete a unit"
    )

    unit_id: Optional[str] = Field(
        default=None,
        description="Delete target; for inserts the fixed anchor (None = previous insert)"
    )

    content: Optional[str] = Field(
        default=None,
        description="Markdown content for inserts"
    )

    model_config = {"frozen": True}


class MutationPlan(BaseModel):
    """Ordered mutation steps for one accepted session.

    ``steps`` is derived from ``segments`` and ``delete_ids``: all
    ``insert_after`` steps precede all ``delete`` steps. The first insert
    is anchored on ``anchor_id``; each later insert is anchored on the unit
    created by the previous one.
    """

    session_id: str = Field(..., description="Session the plan commits")

    strategy: Literal["batch", "sequential"] = Field(
        ...,
        description="Insertion strategy chosen from backend capability and segment count"
    )

    anchor_id: str = Field(..., description="Last originally-selected unit")

    segments: list[str] = Field(..., min_length=1, description="Content of the units to insert")

    delete_ids: list[str] = Field(
        default_factory=list,
        description="Originally-selected units to delete after insertion"
    )

    batch_threshold: int = Field(default=10, ge=1, description="Batch delete threshold")

    model_config = {"frozen": True}

    @computed_field
    @property
    def steps(self) -> list[MutationStep]:
        """Ordered steps the executor consumes."""
        inserts = [
            MutationStep(op="insert_after", unit_id=self.anchor_id if index == 0 else None, content=segment)
            for index, segment in enumerate(self.segments)
        ]
        deletes = [MutationStep(op="delete", unit_id=unit_id) for unit_id in self.delete_ids]
        return inserts + deletes


class MutationResult(BaseModel):
    """Outcome of executing a plan."""

    inserted_ids: list[str] = Field(default_factory=list)
    deleted_ids: list[str] = Field(default_factory=list)
    failed_deletes: list[str] = Field(default_factory=list)
    surface_removed: bool = Field(default=False)
    used_batch_insert: bool = Field(default=False)
    partial_failure: Optional[str] = Field(
        default=None,
        description="Human-readable notice when cleanup after insertion failed"
    )

    @property
    def ok(self) -> bool:
        """True if the plan committed without any post-insertion failure."""
        return self.partial_failure is None
