"""Custom exceptions for quickedit services."""

from enum import Enum
from typing import Optional


class QuickEditError(Exception):
    """Base class for all quickedit errors."""


class ResolutionError(QuickEditError):
    """Raised when no valid selection or context can be resolved.

    Reported to the user; no session is created.
    """


class InvalidUnitIdError(ResolutionError):
    """Raised when an identifier does not match the unit ID grammar.

    Attributes:
        unit_id: The rejected identifier
    """

    def __init__(self, unit_id: str):
        """Initialize InvalidUnitIdError.

        Args:
            unit_id: The rejected identifier
        """
        self.unit_id = unit_id
        super().__init__(f"Invalid unit ID format: {unit_id}")


class StoreError(QuickEditError):
    """Raised when a document store call fails.

    Attributes:
        operation: Store operation that failed (e.g. "insert_unit")
        code: API result code if the store answered, None on transport errors
        message: Human-readable error message
    """

    def __init__(self, operation: str, message: str, code: Optional[int] = None):
        """Initialize StoreError.

        Args:
            operation: Store operation that failed
            message: Human-readable error message
            code: API result code, if any
        """
        self.operation = operation
        self.code = code
        self.message = message
        super().__init__(f"{operation} failed: {message}")


class GenerationError(QuickEditError):
    """Raised when the generation call fails or is cancelled.

    Attributes:
        message: Human-readable error message
        cancelled: True if the failure was caused by cancellation
    """

    def __init__(self, message: str, cancelled: bool = False):
        """Initialize GenerationError.

        Args:
            message: Human-readable error message
            cancelled: True if caused by cancellation
        """
        self.message = message
        self.cancelled = cancelled
        super().__init__(message)


class IntegrityWarning(UserWarning):
    """Streamed length did not match the sum of received chunk lengths.

    Logged only; never aborts a session.
    """


class MutationPhase(str, Enum):
    """Phase of the mutation protocol in which a failure occurred."""

    PLAN = "plan"
    INSERT = "insert"
    SURFACE = "surface"
    DELETE = "delete"
    HISTORY = "history"


class MutationError(QuickEditError):
    """Raised when a document store call fails while committing an edit.

    Failures in the PLAN and INSERT phases leave the original content
    untouched. Later phases are reported as partial success.

    Attributes:
        phase: Phase in which the failure happened
        unit_id: Unit involved in the failing call, if known
        inserted_ids: Units already inserted before the failure
        message: Human-readable error message
    """

    def __init__(
        self,
        phase: MutationPhase,
        message: str,
        unit_id: Optional[str] = None,
        inserted_ids: Optional[list[str]] = None,
    ):
        """Initialize MutationError.

        Args:
            phase: Phase in which the failure happened
            message: Human-readable error message
            unit_id: Unit involved in the failing call
            inserted_ids: Units inserted before the failure
        """
        self.phase = phase
        self.message = message
        self.unit_id = unit_id
        self.inserted_ids = list(inserted_ids or [])
        super().__init__(f"[{phase.value}] {message}")


class ExternalInterferenceError(QuickEditError):
    """Raised when a session's preview surface vanished outside the engine.

    Attributes:
        session_id: Affected session
    """

    def __init__(self, session_id: str):
        """Initialize ExternalInterferenceError.

        Args:
            session_id: Affected session
        """
        self.session_id = session_id
        super().__init__(f"Preview for session {session_id} was removed externally")


class InvalidTransitionError(QuickEditError):
    """Raised when a session is asked to make an illegal state transition."""

    def __init__(self, session_id: str, current: str, target: str):
        """Initialize InvalidTransitionError.

        Args:
            session_id: Session being transitioned
            current: Current state value
            target: Requested state value
        """
        self.session_id = session_id
        self.current = current
        self.target = target
        super().__init__(
            f"Session {session_id} cannot move from {current} to {target}"
        )


class SessionNotFoundError(QuickEditError):
    """Raised when an operation names an unknown or disposed session."""

    def __init__(self, session_id: str):
        """Initialize SessionNotFoundError.

        Args:
            session_id: Unknown session identifier
        """
        self.session_id = session_id
        super().__init__(f"Unknown edit session: {session_id}")


class SessionBusyError(QuickEditError):
    """Raised when cancelling a session that is already committing."""

    def __init__(self, session_id: str):
        """Initialize SessionBusyError.

        Args:
            session_id: Session that is being applied
        """
        self.session_id = session_id
        super().__init__(f"Session {session_id} is being applied and cannot be cancelled")
