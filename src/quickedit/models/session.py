"""EditSession model and its state transition table."""

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field

from quickedit.models.diff import DiffPatch
from quickedit.models.edit_context import EditContext
from quickedit.services.exceptions import InvalidTransitionError


class SessionState(str, Enum):
    """Lifecycle states of an edit session."""

    INPUT_INSTRUCTION = "input_instruction"
    PROCESSING = "processing"
    STREAMING = "streaming"
    REVIEWING = "reviewing"
    APPLYING = "applying"
    APPLIED = "applied"
    REJECTED = "rejected"
    ERROR = "error"
    EXTERNALLY_REMOVED = "externally_removed"


_ABORT = {SessionState.REJECTED, SessionState.ERROR, SessionState.EXTERNALLY_REMOVED}

TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.INPUT_INSTRUCTION: {SessionState.PROCESSING} | _ABORT,
    SessionState.PROCESSING: {SessionState.STREAMING} | _ABORT,
    SessionState.STREAMING: {SessionState.REVIEWING} | _ABORT,
    SessionState.REVIEWING: {SessionState.APPLYING, SessionState.PROCESSING} | _ABORT,
    # Committing is atomic once started: no rejection, no external removal
    SessionState.APPLYING: {SessionState.APPLIED, SessionState.ERROR},
    # Retry or dismiss
    SessionState.ERROR: {SessionState.PROCESSING, SessionState.REJECTED, SessionState.EXTERNALLY_REMOVED},
    SessionState.APPLIED: set(),
    SessionState.REJECTED: set(),
    SessionState.EXTERNALLY_REMOVED: set(),
}

TERMINAL_STATES = frozenset(
    {SessionState.APPLIED, SessionState.REJECTED, SessionState.EXTERNALLY_REMOVED}
)

# States in which a generation call may be outstanding
ACTIVE_STATES = frozenset({SessionState.PROCESSING, SessionState.STREAMING})


class EditSession(BaseModel):
    """One user-triggered edit, tracked through its full lifecycle."""

    id: str = Field(..., description="Session identifier")

    context: EditContext = Field(..., description="Resolved selection snapshot")

    instruction: str = Field(..., min_length=1, description="User instruction")

    action_mode: Literal["replace", "insert"] = Field(
        default="replace",
        description="Replace the selection, or insert the result below it"
    )

    state: SessionState = Field(
        default=SessionState.INPUT_INSTRUCTION,
        description="Current lifecycle state"
    )

    accumulated_text: str = Field(default="", description="Streamed response so far")

    accumulated_text_with_indent: str = Field(
        default="",
        description="Streamed response with the selection's indent prefix applied"
    )

    diff_patches: list[DiffPatch] = Field(
        default_factory=list,
        description="Diff of the original selection against the completed response"
    )

    error: Optional[str] = Field(default=None, description="Human-readable error message")

    partial_failure: Optional[str] = Field(
        default=None,
        description="Set when the edit landed but cleanup after insertion failed"
    )

    chunk_count: int = Field(default=0, ge=0, description="Chunks received this run")

    total_chunk_chars: int = Field(default=0, ge=0, description="Sum of chunk lengths this run")

    retry_count: int = Field(default=0, ge=0, description="Number of retries")

    created_at: datetime = Field(default_factory=datetime.now)

    updated_at: datetime = Field(default_factory=datetime.now)

    model_config = {"frozen": False, "validate_assignment": False}

    @property
    def is_terminal(self) -> bool:
        """True once the session can no longer change state."""
        return self.state in TERMINAL_STATES

    @property
    def original_text(self) -> str:
        """Text the session is rewriting."""
        return self.context.selected_text

    @property
    def final_text(self) -> str:
        """Text to commit: the indented rendition when one exists."""
        return self.accumulated_text_with_indent or self.accumulated_text

    def can_transition_to(self, target: SessionState) -> bool:
        """Check whether ``target`` is reachable from the current state."""
        return target in TRANSITIONS[self.state]

    def transition_to(self, target: SessionState) -> None:
        """
        Move the session to ``target``.

        Args:
            target: Requested state

        Raises:
            InvalidTransitionError: If the transition is not in the table
        """
        if not self.can_transition_to(target):
            raise InvalidTransitionError(self.id, self.state.value, target.value)
        self.state = target
        self.updated_at = datetime.now()

    def reset_output(self) -> None:
        """Clear streamed output, diff and errors before a (re)run."""
        self.accumulated_text = ""
        self.accumulated_text_with_indent = ""
        self.diff_patches = []
        self.error = None
        self.partial_failure = None
        self.chunk_count = 0
        self.total_chunk_chars = 0
        self.updated_at = datetime.now()
