"""Cooperative cancellation for edit sessions."""

import asyncio
from typing import AsyncIterator, Optional, TypeVar

from quickedit.services.exceptions import GenerationError


T = TypeVar("T")


class CancellationToken:
    """
    One-shot cancellation signal shared by a session and its generation call.

    Checked at every suspension point. ``guard`` wraps an async iterator so a
    pending read is abandoned (and the iterator closed) as soon as the token
    fires, even if the remote side never sends another chunk.

    Example:
        >>> token = CancellationToken()
        >>> async for chunk in token.guard(client.stream(messages, system, token)):
        ...     handle(chunk)
        >>> token.cancel()  # from elsewhere
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        """Fire the token. Idempotent; the first reason wins."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise ``GenerationError(cancelled=True)`` if the token fired."""
        if self.cancelled:
            raise GenerationError(f"Generation {self.reason}", cancelled=True)

    async def wait(self) -> None:
        """Block until the token fires."""
        await self._event.wait()

    async def guard(self, source: AsyncIterator[T]) -> AsyncIterator[T]:
        """
        Yield from ``source`` until it ends or the token fires.

        Raises:
            GenerationError: With ``cancelled=True`` when the token fires
        """
        iterator = source.__aiter__()
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            while True:
                self.raise_if_cancelled()
                step = asyncio.ensure_future(iterator.__anext__())
                done, _ = await asyncio.wait(
                    {step, waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                if step not in done:
                    step.cancel()
                    try:
                        await step
                    except (asyncio.CancelledError, StopAsyncIteration):
                        pass
                    self.raise_if_cancelled()
                try:
                    item = step.result()
                except StopAsyncIteration:
                    return
                yield item
        finally:
            waiter.cancel()
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
