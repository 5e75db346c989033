"""External-change detection for session preview surfaces."""

from typing import Callable, Optional, Protocol

import structlog
from pydantic import BaseModel, Field


logger = structlog.get_logger()


class SurfaceRemoved(BaseModel):
    """A session's preview surface disappeared from the document."""

    session_id: str = Field(..., description="Session owning the removed surface")

    model_config = {"frozen": True}


ChangeCallback = Callable[[SurfaceRemoved], None]


class ExternalChangeSource(Protocol):
    """Delivers surface-removal events observed in the host document."""

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        ...


class InMemoryChangeSource:
    """
    Change source driven by explicit ``emit`` calls.

    Used by tests and by hosts that already know when a surface vanished.
    """

    def __init__(self) -> None:
        self._callbacks: list[ChangeCallback] = []

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def emit(self, event: SurfaceRemoved) -> None:
        for callback in list(self._callbacks):
            callback(event)

    def remove_surface(self, session_id: str) -> None:
        self.emit(SurfaceRemoved(session_id=session_id))


class ExternalChangeMonitor:
    """
    Forward surface removals for registered sessions to the orchestrator.

    ``pause(session_id)`` mutes one session while the engine tears it down;
    removals for every other session are still delivered. ``pause()`` with
    no id mutes all sessions. Pauses nest per key: a key stays muted until
    every pause has been matched by a resume. Muted events are dropped, not
    replayed.

    Example:
        >>> monitor = ExternalChangeMonitor(source, on_removed=orchestrator_callback)
        >>> monitor.start()
        >>> monitor.register(session.id)
    """

    def __init__(self, source: ExternalChangeSource, on_removed: Callable[[str], None]):
        self.source = source
        self.on_removed = on_removed
        self._sessions: set[str] = set()
        # Pause depth per session id; None mutes every session
        self._paused: dict[Optional[str], int] = {}
        self._unsubscribe = None

    @property
    def is_paused(self) -> bool:
        return bool(self._paused)

    def is_muted(self, session_id: str) -> bool:
        return None in self._paused or session_id in self._paused

    @property
    def is_running(self) -> bool:
        return self._unsubscribe is not None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.source.subscribe(self._handle)
            logger.debug("external_monitor_started")

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            logger.debug("external_monitor_stopped")

    def register(self, session_id: str) -> None:
        self._sessions.add(session_id)

    def unregister(self, session_id: str) -> None:
        self._sessions.discard(session_id)

    def pause(self, session_id: Optional[str] = None) -> None:
        self._paused[session_id] = self._paused.get(session_id, 0) + 1

    def resume(self, session_id: Optional[str] = None) -> None:
        depth = self._paused.get(session_id, 0)
        if depth > 1:
            self._paused[session_id] = depth - 1
        else:
            self._paused.pop(session_id, None)

    def _handle(self, event: SurfaceRemoved) -> None:
        if event.session_id not in self._sessions:
            return
        if self.is_muted(event.session_id):
            logger.debug("external_change_ignored_while_paused", session_id=event.session_id)
            return

        logger.warning("external_change_detected", session_id=event.session_id)
        self.unregister(event.session_id)
        self.on_removed(event.session_id)
