"""Concurrency-bounded queue of edit sessions waiting for a generation slot."""

import asyncio
from collections import deque
from dataclasses import dataclass

import structlog
from pydantic import BaseModel, Field


logger = structlog.get_logger()


@dataclass
class SlotRequest:
    """A session waiting for a generation slot."""
    session_id: str
    ready_event: asyncio.Event  # Set when the request is granted or dropped
    granted: bool = False


class QueueStatistics(BaseModel):
    """Snapshot of the queue for status displays."""

    queued: int = Field(..., ge=0, description="Sessions waiting for a slot")
    processing: int = Field(..., ge=0, description="Sessions holding a slot")
    is_paused: bool = Field(..., description="Whether new sessions are held back")
    max_concurrent: int = Field(..., ge=1, description="Slot count")

    model_config = {"frozen": True}


class EditQueue:
    """
    FIFO slot queue bounding how many sessions generate at once.

    Sessions call ``acquire`` before generating and ``release`` when done.
    While paused, requests accumulate; ``resume`` grants them in order up
    to ``max_concurrent``.

    Example:
        >>> queue = EditQueue(max_concurrent=1)
        >>> if await queue.acquire(session.id):
        ...     try:
        ...         await runner.run(session, token)
        ...     finally:
        ...         queue.release(session.id)
    """

    def __init__(self, max_concurrent: int = 1):
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")
        self.max_concurrent = max_concurrent
        self._pending: deque[SlotRequest] = deque()
        self._in_flight: set[str] = set()
        self._paused = False

    @property
    def queued(self) -> int:
        return len(self._pending)

    @property
    def processing(self) -> int:
        return len(self._in_flight)

    @property
    def is_paused(self) -> bool:
        return self._paused

    def is_queued(self, session_id: str) -> bool:
        return any(r.session_id == session_id for r in self._pending)

    def is_processing(self, session_id: str) -> bool:
        return session_id in self._in_flight

    def in_flight(self) -> list[str]:
        return sorted(self._in_flight)

    async def acquire(self, session_id: str) -> bool:
        """
        Wait for a slot.

        Args:
            session_id: Session requesting the slot

        Returns:
            True when the slot was granted, False if the request was
            dropped by ``discard`` or ``clear`` before it ran
        """
        request = SlotRequest(session_id=session_id, ready_event=asyncio.Event())
        self._pending.append(request)

        logger.info(
            "edit_queue_request_submitted",
            session_id=session_id,
            queued=len(self._pending),
            processing=len(self._in_flight),
        )
        self._drain()

        try:
            await request.ready_event.wait()
        except asyncio.CancelledError:
            if request in self._pending:
                self._pending.remove(request)
            elif request.granted:
                self.release(session_id)
            raise

        if request.granted:
            logger.info("edit_queue_request_ready", session_id=session_id)
        else:
            logger.info("edit_queue_request_dropped", session_id=session_id)
        return request.granted

    def release(self, session_id: str) -> None:
        """Give the slot back and start the next waiting session, if any."""
        if session_id in self._in_flight:
            self._in_flight.discard(session_id)
            logger.info("edit_queue_slot_released", session_id=session_id)
            self._drain()
        else:
            logger.warning(
                "edit_queue_slot_release_mismatch",
                session_id=session_id,
                in_flight=sorted(self._in_flight),
            )

    def discard(self, session_id: str) -> bool:
        """
        Drop a waiting session from the queue.

        Returns:
            True if the session was waiting; its ``acquire`` returns False
        """
        for request in self._pending:
            if request.session_id == session_id:
                self._pending.remove(request)
                request.ready_event.set()
                logger.info("edit_queue_request_discarded", session_id=session_id)
                return True
        return False

    def clear(self) -> list[str]:
        """Drop every waiting session; returns their ids in queue order."""
        dropped = [r.session_id for r in self._pending]
        while self._pending:
            self._pending.popleft().ready_event.set()
        if dropped:
            logger.info("edit_queue_cleared", dropped=len(dropped))
        return dropped

    def pause(self) -> None:
        self._paused = True
        logger.info("edit_queue_paused", queued=len(self._pending))

    def resume(self) -> None:
        self._paused = False
        logger.info("edit_queue_resumed", queued=len(self._pending))
        self._drain()

    def set_max_concurrent(self, max_concurrent: int) -> None:
        """Change the slot count; raising it starts waiting sessions at once."""
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")
        self.max_concurrent = max_concurrent
        self._drain()

    def statistics(self) -> QueueStatistics:
        return QueueStatistics(
            queued=len(self._pending),
            processing=len(self._in_flight),
            is_paused=self._paused,
            max_concurrent=self.max_concurrent,
        )

    def _drain(self) -> None:
        while not self._paused and self._pending and len(self._in_flight) < self.max_concurrent:
            request = self._pending.popleft()
            request.granted = True
            self._in_flight.add(request.session_id)
            logger.debug("edit_queue_slot_granted", session_id=request.session_id)
            request.ready_event.set()
