"""History models for single-step undo of committed edits."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class HistoryEntry(BaseModel):
    """A committed edit that can be undone."""

    id: str = Field(..., description="History entry identifier")
    session_id: Optional[str] = Field(default=None, description="Session that produced the edit")
    original_content: str = Field(..., description="Selection text before the edit")
    modified_content: str = Field(..., description="Text committed to the document")
    unit_id: str = Field(..., description="Primary unit of the original selection")
    inserted_unit_ids: list[str] = Field(
        default_factory=list,
        description="Units created by the edit, in document order"
    )
    instruction: Optional[str] = Field(default=None, description="Instruction used")
    action_mode: Literal["replace", "insert"] = Field(
        default="replace",
        description="Whether the edit replaced the selection or was inserted below it"
    )
    applied_at: datetime = Field(default_factory=datetime.now)

    model_config = {"frozen": True}


class UndoResult(BaseModel):
    """Outcome of undoing the most recent edit."""

    undone: bool = Field(default=False, description="False for a no-op (empty history)")
    entry: Optional[HistoryEntry] = Field(default=None, description="Entry that was undone")
    restored_unit_id: Optional[str] = Field(default=None, description="Unit now holding the original content")
    deleted_unit_ids: list[str] = Field(default_factory=list)
    error: Optional[str] = Field(default=None, description="Message when restoring failed")

    model_config = {"frozen": True}
