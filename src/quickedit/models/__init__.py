"""Pydantic data models for quickedit."""

from quickedit.models.diff import DiffPatch, LineDiff
from quickedit.models.edit_context import EditContext, PlaceholderSpec, ResolvedContext
from quickedit.models.history import HistoryEntry, UndoResult
from quickedit.models.mutation import MutationPlan, MutationResult, MutationStep
from quickedit.models.session import EditSession, SessionState
from quickedit.models.unit import Unit

__all__ = [
    "DiffPatch",
    "EditContext",
    "EditSession",
    "HistoryEntry",
    "LineDiff",
    "MutationPlan",
    "MutationResult",
    "MutationStep",
    "PlaceholderSpec",
    "ResolvedContext",
    "SessionState",
    "UndoResult",
    "Unit",
]
