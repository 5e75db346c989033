"""Session lifecycle events for presentation collaborators."""

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

import structlog

from quickedit.models.session import EditSession


logger = structlog.get_logger()

EVENT_NAMES = (
    "created",
    "streaming_chunk",
    "review_ready",
    "applied",
    "rejected",
    "error",
    "externally_removed",
)


@dataclass
class EditEvent:
    """One lifecycle event of a session."""
    name: str
    session: EditSession
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def session_id(self) -> str:
        return self.session.id


EventHandler = Callable[[EditEvent], None]


class EventBus:
    """
    Fan events out to subscribers.

    A subscriber that raises is logged and skipped; it never affects the
    session or the other subscribers.
    """

    def __init__(self) -> None:
        self._handlers: list[tuple[EventHandler, Optional[frozenset[str]]]] = []

    def subscribe(self, handler: EventHandler, events: Optional[Iterable[str]] = None) -> Callable[[], None]:
        """
        Register ``handler`` for ``events`` (all events when None).

        Returns:
            Function that unsubscribes the handler
        """
        names = frozenset(events) if events is not None else None
        if names is not None:
            unknown = names - set(EVENT_NAMES)
            if unknown:
                raise ValueError(f"Unknown event name(s): {', '.join(sorted(unknown))}")
        entry = (handler, names)
        self._handlers.append(entry)

        def unsubscribe() -> None:
            if entry in self._handlers:
                self._handlers.remove(entry)

        return unsubscribe

    def emit(self, name: str, session: EditSession, **data: Any) -> None:
        event = EditEvent(name=name, session=session, data=data)
        for handler, names in list(self._handlers):
            if names is not None and name not in names:
                continue
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    "event_handler_failed",
                    event_name=name,
                    session_id=session.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
