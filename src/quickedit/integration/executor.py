"""Mutation execution with insert-before-delete ordering.

This module handles:
- Inserting replacement units after the selection (batch or sequential)
- Removing the session's preview once every insert succeeded
- Deleting the originally-selected units (batch or parallel)
- Muting the external-change observer for this session during teardown

An insert failure aborts before anything is deleted. Failures after the
inserts are reported on the result and never rolled back.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Protocol

import structlog

from quickedit.document.store import DocumentStore
from quickedit.models.mutation import MutationPlan, MutationResult
from quickedit.services.exceptions import MutationError, MutationPhase, StoreError


logger = structlog.get_logger()

DEFAULT_INSERT_SETTLE_DELAY = 0.3
DEFAULT_DELETE_SETTLE_DELAY = 0.5


class PreviewSurface(Protocol):
    """Live preview owned by one session."""

    async def remove(self) -> None:
        ...


class ObserverControl(Protocol):
    """External-change observer that must ignore the engine's own teardown of a session."""

    def pause(self, session_id: Optional[str] = None) -> None:
        ...

    def resume(self, session_id: Optional[str] = None) -> None:
        ...


class MutationExecutor:
    """
    Commit a ``MutationPlan`` through the document store.

    The plan's steps are consumed in order: every ``insert_after`` step,
    then every ``delete`` step. The settle delays give the store time to
    propagate a change before the next dependent call.

    Example:
        >>> executor = MutationExecutor(store)
        >>> result = await executor.execute(plan, surface=preview, observer=monitor)
        >>> result.inserted_ids
        ['20251028234500-newunit']
    """

    def __init__(
        self,
        store: DocumentStore,
        insert_settle_delay: float = DEFAULT_INSERT_SETTLE_DELAY,
        delete_settle_delay: float = DEFAULT_DELETE_SETTLE_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.insert_settle_delay = insert_settle_delay
        self.delete_settle_delay = delete_settle_delay
        self._sleep = sleep

    async def execute(
        self,
        plan: MutationPlan,
        surface: Optional[PreviewSurface] = None,
        observer: Optional[ObserverControl] = None,
    ) -> MutationResult:
        """
        Execute the plan.

        Args:
            plan: Plan from ``planner.plan``
            surface: Session preview to remove after insertion
            observer: External-change observer, muted for this session during teardown

        Returns:
            Result with inserted/deleted ids and any partial-failure notice

        Raises:
            MutationError: (phase INSERT) if any insert fails; nothing was deleted
        """
        contents = [step.content for step in plan.steps if step.op == "insert_after"]
        delete_ids = [step.unit_id for step in plan.steps if step.op == "delete"]

        logger.info(
            "mutation_started",
            session_id=plan.session_id,
            strategy=plan.strategy,
            segment_count=len(contents),
            delete_count=len(delete_ids),
        )

        notices = []
        inserted_ids, used_batch = await self._insert(plan, contents)
        if len(inserted_ids) != len(contents):
            notices.append(
                f"only {len(inserted_ids)} of {len(contents)} inserted units could be identified, "
                "so undo may leave some of them behind"
            )
        await self._sleep(self.insert_settle_delay)

        surface_removed = False
        deleted_ids: list[str] = []
        failed_deletes: list[str] = []

        if observer is not None:
            observer.pause(plan.session_id)
        try:
            if surface is not None:
                try:
                    await surface.remove()
                    surface_removed = True
                except Exception as e:
                    logger.warning("preview_remove_failed", session_id=plan.session_id, error=str(e))
                    notices.append("the preview could not be removed")

            deleted_ids, failed_deletes = await self._delete(plan, delete_ids)
            if failed_deletes:
                notices.append(
                    f"{len(failed_deletes)} original unit(s) could not be removed "
                    f"({', '.join(failed_deletes)})"
                )

            await self._sleep(self.delete_settle_delay)
        finally:
            if observer is not None:
                observer.resume(plan.session_id)

        partial_failure = None
        if notices:
            partial_failure = "The edit was inserted, but " + " and ".join(notices) + "."
            logger.warning("mutation_partial_failure", session_id=plan.session_id, message=partial_failure)

        logger.info(
            "mutation_completed",
            session_id=plan.session_id,
            inserted=len(inserted_ids),
            deleted=len(deleted_ids),
            failed_deletes=len(failed_deletes),
        )

        return MutationResult(
            inserted_ids=inserted_ids,
            deleted_ids=deleted_ids,
            failed_deletes=failed_deletes,
            surface_removed=surface_removed,
            used_batch_insert=used_batch,
            partial_failure=partial_failure,
        )

    async def _insert(self, plan: MutationPlan, contents: list[str]) -> tuple[list[str], bool]:
        if plan.strategy == "batch":
            try:
                ids = await self.store.batch_insert_units(contents, plan.anchor_id)
            except StoreError as e:
                # The call failed as a whole; nothing was written
                logger.warning(
                    "batch_insert_failed_falling_back",
                    session_id=plan.session_id,
                    error=str(e),
                )
            else:
                logger.info(
                    "batch_insert_succeeded",
                    session_id=plan.session_id,
                    count=len(ids),
                    expected=len(contents),
                )
                return ids, True

        return await self._insert_sequential(plan, contents), False

    async def _insert_sequential(self, plan: MutationPlan, contents: list[str]) -> list[str]:
        inserted: list[str] = []
        anchor = plan.anchor_id
        for index, segment in enumerate(contents):
            try:
                new_id = await self.store.insert_unit(segment, anchor)
            except StoreError as e:
                logger.error(
                    "insert_failed",
                    session_id=plan.session_id,
                    segment_index=index,
                    anchor_id=anchor,
                    inserted=len(inserted),
                    error=str(e),
                )
                raise MutationError(
                    MutationPhase.INSERT,
                    f"Inserting segment {index + 1} of {len(contents)} failed: {e.message}",
                    unit_id=anchor,
                    inserted_ids=inserted,
                ) from e
            logger.debug("unit_inserted", session_id=plan.session_id, unit_id=new_id, anchor_id=anchor)
            inserted.append(new_id)
            anchor = new_id
        return inserted

    async def _delete(self, plan: MutationPlan, ids: list[str]) -> tuple[list[str], list[str]]:
        if not ids:
            return [], []

        if len(ids) > plan.batch_threshold:
            try:
                await self.store.batch_delete_units(ids)
                logger.info("batch_delete_succeeded", session_id=plan.session_id, count=len(ids))
                return ids, []
            except StoreError as e:
                logger.warning("batch_delete_failed_falling_back", session_id=plan.session_id, error=str(e))

        results = await asyncio.gather(
            *(self.store.delete_unit(unit_id) for unit_id in ids),
            return_exceptions=True,
        )
        deleted, failed = [], []
        for unit_id, outcome in zip(ids, results):
            if isinstance(outcome, BaseException):
                logger.error("delete_failed", session_id=plan.session_id, unit_id=unit_id, error=str(outcome))
                failed.append(unit_id)
            else:
                deleted.append(unit_id)
        return deleted, failed
