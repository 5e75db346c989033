"""Session orchestrator: the public surface of the edit engine.

Owns every ``EditSession`` from trigger to disposal and coordinates:
- Slot queueing and cancellation of generation runs
- Committing accepted responses through the mutation executor
- The bounded edit history and single-step undo
- Forced teardown when a preview surface is removed externally
"""

import asyncio
from typing import Callable, Iterable, Literal, Optional

import structlog

from quickedit.document.store import DocumentStore
from quickedit.document.tree import DocumentTree
from quickedit.editing.context_resolver import ContextResolver, SelectionSource
from quickedit.editing.prompt_builder import PromptBuilder
from quickedit.editing.session import GenerationService, SessionRunner
from quickedit.integration.executor import MutationExecutor, PreviewSurface
from quickedit.integration.planner import plan
from quickedit.models.config import EditConfig
from quickedit.models.history import HistoryEntry, UndoResult
from quickedit.models.mutation import MutationResult
from quickedit.models.session import ACTIVE_STATES, EditSession, SessionState
from quickedit.orchestration.events import EventBus, EventHandler
from quickedit.orchestration.history import EditHistory
from quickedit.orchestration.monitor import (
    ExternalChangeMonitor,
    ExternalChangeSource,
    InMemoryChangeSource,
)
from quickedit.orchestration.queue import EditQueue, QueueStatistics
from quickedit.services.exceptions import (
    ExternalInterferenceError,
    InvalidTransitionError,
    MutationError,
    SessionBusyError,
    SessionNotFoundError,
    StoreError,
)
from quickedit.services.response_filter import ResponseFilter
from quickedit.utils.cancellation import CancellationToken
from quickedit.utils.ids import generate_history_id, generate_session_id
from quickedit.utils.logging import session_log_context


logger = structlog.get_logger()

ActionMode = Literal["replace", "insert"]
SurfaceFactory = Callable[[EditSession], PreviewSurface]


class EditOrchestrator:
    """
    Run edit sessions against a document store and a generation service.

    Sessions stay readable through ``get_session`` after they reach a
    terminal state, until ``dispose`` is called.

    Example:
        >>> orchestrator = EditOrchestrator(store, llm_client, tree=tree)
        >>> session_id = await orchestrator.trigger_edit(source, "Make it formal")
        >>> session = await orchestrator.wait_for_review(session_id)
        >>> await orchestrator.accept(session_id)
    """

    def __init__(
        self,
        store: DocumentStore,
        generation: GenerationService,
        tree: Optional[DocumentTree] = None,
        config: Optional[EditConfig] = None,
        change_source: Optional[ExternalChangeSource] = None,
        surface_factory: Optional[SurfaceFactory] = None,
        executor: Optional[MutationExecutor] = None,
    ):
        self.config = config or EditConfig()
        self.store = store
        self.resolver = ContextResolver(store, tree)
        self.prompt_builder = PromptBuilder(
            template=self.config.prompt_template,
            system_prompt=self.config.system_prompt,
            appended_prompt=self.config.appended_prompt,
        )
        self.events = EventBus()
        self.runner = SessionRunner(
            generation,
            prompt_builder=self.prompt_builder,
            response_filter=ResponseFilter(),
            filter_rules=self.config.filter_rules,
            on_event=self.events.emit,
        )
        self.executor = executor or MutationExecutor(
            store,
            insert_settle_delay=self.config.insert_settle_delay,
            delete_settle_delay=self.config.delete_settle_delay,
        )
        self.queue = EditQueue(self.config.max_concurrent)
        self.history = EditHistory(self.config.history_size)
        self.change_source = change_source or InMemoryChangeSource()
        self.monitor = ExternalChangeMonitor(self.change_source, self._on_surface_removed)
        self.monitor.start()
        self.surface_factory = surface_factory

        self._sessions: dict[str, EditSession] = {}
        self._tokens: dict[str, CancellationToken] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._surfaces: dict[str, PreviewSurface] = {}

    @property
    def tree(self) -> Optional[DocumentTree]:
        return self.resolver.tree

    @tree.setter
    def tree(self, tree: Optional[DocumentTree]) -> None:
        self.resolver.tree = tree

    def subscribe(self, handler: EventHandler, events: Optional[Iterable[str]] = None) -> Callable[[], None]:
        """Subscribe to session lifecycle events; see ``EventBus.subscribe``."""
        return self.events.subscribe(handler, events)

    # Session lifecycle

    async def trigger_edit(
        self,
        source: SelectionSource,
        instruction: str,
        action_mode: ActionMode = "replace",
    ) -> Optional[str]:
        """
        Resolve the selection and start a session for it.

        Args:
            source: Host selection snapshot
            instruction: User instruction
            action_mode: "replace" the selection or "insert" below it

        Returns:
            The new session id, or None when no text could be resolved
        """
        if not instruction or not instruction.strip():
            logger.info("edit_not_triggered", reason="empty_instruction")
            return None

        context = await self.resolver.build_context(source, self.prompt_builder.template)
        if context is None:
            logger.info("edit_not_triggered", reason="no_selection")
            return None

        session = EditSession(
            id=generate_session_id(),
            context=context,
            instruction=instruction,
            action_mode=action_mode,
        )
        logger.info(
            "session_created",
            session_id=session.id,
            unit_count=len(context.selected_unit_ids),
            action_mode=action_mode,
        )
        self._sessions[session.id] = session
        if self.surface_factory is not None:
            self._surfaces[session.id] = self.surface_factory(session)
        self.events.emit("created", session)

        self.enqueue(session)
        return session.id

    def enqueue(self, session: EditSession) -> None:
        """
        Queue a session for generation.

        Raises:
            SessionBusyError: If the session already has a run queued or in flight
        """
        task = self._tasks.get(session.id)
        if task is not None and not task.done():
            raise SessionBusyError(session.id)

        self._sessions.setdefault(session.id, session)
        self.monitor.register(session.id)
        token = CancellationToken()
        self._tokens[session.id] = token
        self._tasks[session.id] = asyncio.create_task(
            self._run(session, token), name=f"edit_session_{session.id}"
        )

    async def _run(self, session: EditSession, token: CancellationToken) -> None:
        with session_log_context(session.id):
            if not await self.queue.acquire(session.id):
                return
            try:
                # Removed externally while it was waiting for the slot
                if not session.is_terminal:
                    await self.runner.run(session, token)
            finally:
                self.queue.release(session.id)
                if session.is_terminal:
                    self._release_session(session.id)

    async def wait_for_review(self, session_id: str) -> EditSession:
        """Wait until the session's current run has finished, however it ended."""
        session = self._require(session_id)
        task = self._tasks.get(session_id)
        if task is not None:
            await asyncio.wait({task})
        return session

    def pause(self) -> None:
        """Hold queued sessions back; running ones continue."""
        self.queue.pause()

    def resume(self) -> None:
        self.queue.resume()

    async def cancel(self, session_id: str, reason: str = "cancelled") -> bool:
        """
        Cancel a session's pending or running generation, or dismiss its result.

        Returns:
            False if the session had already finished

        Raises:
            SessionNotFoundError: If the session is unknown
            SessionBusyError: If the session is being applied
        """
        session = self._require(session_id)
        if session.state == SessionState.APPLYING:
            raise SessionBusyError(session_id)
        if session.is_terminal:
            return False

        if self.queue.discard(session_id):
            await self._finish_rejected(session, reason)
            return True

        task = self._tasks.get(session_id)
        token = self._tokens.get(session_id)
        if task is not None and not task.done() and token is not None:
            logger.info("session_cancelling", session_id=session_id, reason=reason)
            token.cancel(reason)
            await asyncio.wait({task})
            await self._remove_surface(session_id)
            return True

        await self._finish_rejected(session, reason)
        return True

    async def cancel_all(self) -> list[str]:
        """
        Cancel every in-flight session's token, then clear the queue.

        Sessions being applied are left to finish.

        Returns:
            Ids of the sessions that were cancelled
        """
        cancelled = []
        running = []
        for session_id in self.queue.in_flight():
            token = self._tokens.get(session_id)
            if token is not None:
                token.cancel("cancelled")
                cancelled.append(session_id)
                task = self._tasks.get(session_id)
                if task is not None:
                    running.append(task)

        dropped = self.queue.clear()
        if running:
            await asyncio.wait(running)

        for session_id in cancelled:
            await self._remove_surface(session_id)
        for session_id in dropped:
            session = self._sessions.get(session_id)
            if session is not None and not session.is_terminal:
                await self._finish_rejected(session, "cancelled")

        logger.info("sessions_cancelled", in_flight=len(cancelled), queued=len(dropped))
        return cancelled + dropped

    async def reject(self, session_id: str) -> EditSession:
        """
        Discard a session's result without touching the document.

        Raises:
            SessionNotFoundError: If the session is unknown
            SessionBusyError: If the session is being applied
            InvalidTransitionError: If the session already finished
        """
        session = self._require(session_id)
        if session.state in ACTIVE_STATES or self.queue.is_queued(session_id):
            await self.cancel(session_id, reason="rejected")
            return session
        if session.state == SessionState.APPLYING:
            raise SessionBusyError(session_id)
        if not session.can_transition_to(SessionState.REJECTED):
            raise InvalidTransitionError(session_id, session.state.value, SessionState.REJECTED.value)
        await self._finish_rejected(session, "rejected")
        return session

    async def retry(self, session_id: str) -> EditSession:
        """
        Re-run a reviewed or failed session with the same instruction and context.

        Raises:
            SessionNotFoundError: If the session is unknown
            InvalidTransitionError: Unless the session is REVIEWING or ERROR
        """
        session = self._require(session_id)
        if session.state not in (SessionState.REVIEWING, SessionState.ERROR):
            raise InvalidTransitionError(session_id, session.state.value, SessionState.PROCESSING.value)

        session.transition_to(SessionState.PROCESSING)
        session.reset_output()
        session.retry_count += 1
        logger.info("session_retrying", session_id=session_id, retry_count=session.retry_count)
        self.enqueue(session)
        return session

    async def accept(self, session_id: str) -> EditSession:
        """Replace the selection with the reviewed response."""
        return await self._apply(session_id, "replace")

    async def insert(self, session_id: str) -> EditSession:
        """Insert the reviewed response below the selection, keeping the original."""
        return await self._apply(session_id, "insert")

    async def _apply(self, session_id: str, action_mode: ActionMode) -> EditSession:
        with session_log_context(session_id):
            return await self._commit(session_id, action_mode)

    async def _commit(self, session_id: str, action_mode: ActionMode) -> EditSession:
        session = self._require(session_id)
        if session.state != SessionState.REVIEWING:
            raise InvalidTransitionError(session_id, session.state.value, SessionState.APPLYING.value)

        session.action_mode = action_mode
        session.transition_to(SessionState.APPLYING)
        logger.info("session_state_changed", session_id=session_id, state=session.state.value)

        try:
            batch_supported = await self._supports_batch_insert()
            mutation_plan = plan(session, batch_supported, self.config.batch_threshold)
            result = await self.executor.execute(
                mutation_plan,
                surface=self._surfaces.get(session_id),
                observer=self.monitor,
            )
        except MutationError as e:
            self._fail_apply(session, e.message)
            return session
        except Exception as e:
            logger.error(
                "apply_failed_unexpectedly",
                session_id=session_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._fail_apply(session, f"Applying the edit failed: {e}")
            return session

        self._record_history(session, result)
        session.partial_failure = result.partial_failure
        session.transition_to(SessionState.APPLIED)
        logger.info(
            "session_state_changed",
            session_id=session_id,
            state=session.state.value,
            inserted=len(result.inserted_ids),
            partial_failure=result.partial_failure is not None,
        )
        if result.surface_removed:
            self._surfaces.pop(session_id, None)
        self._release_session(session_id)
        self.events.emit("applied", session, result=result, partial_failure=result.partial_failure)
        return session

    async def _supports_batch_insert(self) -> bool:
        try:
            return await self.store.supports_batch_insert()
        except StoreError as e:
            logger.warning("batch_capability_unknown", error=str(e))
            return False

    def _fail_apply(self, session: EditSession, message: str) -> None:
        session.error = message
        session.transition_to(SessionState.ERROR)
        logger.error("session_failed", session_id=session.id, error=message)
        self.events.emit("error", session, error=message)

    def _record_history(self, session: EditSession, result: MutationResult) -> None:
        entry = HistoryEntry(
            id=generate_history_id(),
            session_id=session.id,
            original_content=session.original_text,
            modified_content=session.final_text,
            unit_id=session.context.primary_unit_id,
            inserted_unit_ids=result.inserted_ids,
            instruction=session.instruction,
            action_mode=session.action_mode,
        )
        self.history.add(entry)
        logger.info("history_entry_added", entry_id=entry.id, session_id=session.id, entries=len(self.history))

    async def undo_last(self) -> UndoResult:
        """
        Undo the most recent committed edit.

        A replacement is collapsed back into its first inserted unit, which
        receives the original content; the other inserted units are deleted.
        An insertion only deletes what it inserted.

        Returns:
            No-op result (``undone=False``) when the history is empty or the
            restore call failed; the entry is kept in the latter case
        """
        entry = self.history.last()
        if entry is None:
            logger.info("undo_skipped", reason="empty_history")
            return UndoResult(undone=False)

        restored_id: Optional[str] = None
        to_delete = list(entry.inserted_unit_ids)
        if entry.action_mode == "replace":
            if to_delete:
                restored_id = to_delete.pop(0)
            else:
                restored_id = entry.unit_id
            try:
                await self.store.update_unit(restored_id, entry.original_content)
            except StoreError as e:
                logger.error("undo_failed", entry_id=entry.id, unit_id=restored_id, error=str(e))
                return UndoResult(undone=False, entry=entry, error=e.message)

        results = await asyncio.gather(
            *(self.store.delete_unit(unit_id) for unit_id in to_delete),
            return_exceptions=True,
        )
        deleted, failed = [], []
        for unit_id, outcome in zip(to_delete, results):
            if isinstance(outcome, BaseException):
                logger.error("undo_delete_failed", entry_id=entry.id, unit_id=unit_id, error=str(outcome))
                failed.append(unit_id)
            else:
                deleted.append(unit_id)

        self.history.pop_last()
        logger.info(
            "edit_undone",
            entry_id=entry.id,
            restored_unit_id=restored_id,
            deleted=len(deleted),
            failed=len(failed),
        )
        error = None
        if failed:
            error = f"{len(failed)} inserted unit(s) could not be removed ({', '.join(failed)})"
        return UndoResult(
            undone=True,
            entry=entry,
            restored_unit_id=restored_id,
            deleted_unit_ids=deleted,
            error=error,
        )

    # Accessors

    def statistics(self) -> QueueStatistics:
        return self.queue.statistics()

    def get_session(self, session_id: str) -> Optional[EditSession]:
        return self._sessions.get(session_id)

    def sessions(self) -> list[EditSession]:
        return list(self._sessions.values())

    async def dispose(self, session_id: str) -> None:
        """
        Forget a session, cancelling it first if it is still live.

        Raises:
            SessionBusyError: If the session is being applied
        """
        session = self._sessions.get(session_id)
        if session is None:
            return
        if not session.is_terminal:
            await self.cancel(session_id, reason="disposed")
        self._release_session(session_id)
        self._surfaces.pop(session_id, None)
        self._tasks.pop(session_id, None)
        del self._sessions[session_id]
        logger.debug("session_disposed", session_id=session_id)

    async def shutdown(self) -> None:
        """Cancel everything still running and stop watching for external changes."""
        await self.cancel_all()
        self.monitor.stop()

    # Internals

    def _require(self, session_id: str) -> EditSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _release_session(self, session_id: str) -> None:
        self.monitor.unregister(session_id)
        self._tokens.pop(session_id, None)

    async def _remove_surface(self, session_id: str) -> None:
        surface = self._surfaces.pop(session_id, None)
        if surface is None:
            return
        self.monitor.pause(session_id)
        try:
            await surface.remove()
        except Exception as e:
            logger.warning("preview_remove_failed", session_id=session_id, error=str(e))
        finally:
            self.monitor.resume(session_id)

    async def _finish_rejected(self, session: EditSession, reason: str) -> None:
        if session.can_transition_to(SessionState.REJECTED):
            session.transition_to(SessionState.REJECTED)
            logger.info("session_state_changed", session_id=session.id, state=session.state.value, reason=reason)
            self.events.emit("rejected", session, reason=reason)
        await self._remove_surface(session.id)
        self._release_session(session.id)

    def _on_surface_removed(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None or session.is_terminal:
            return
        if not session.can_transition_to(SessionState.EXTERNALLY_REMOVED):
            logger.warning(
                "external_removal_ignored",
                session_id=session_id,
                state=session.state.value,
            )
            return

        self.queue.discard(session_id)
        token = self._tokens.get(session_id)
        if token is not None:
            token.cancel("externally_removed")

        session.error = str(ExternalInterferenceError(session_id))
        session.transition_to(SessionState.EXTERNALLY_REMOVED)
        logger.warning("session_state_changed", session_id=session_id, state=session.state.value)

        # The surface is already gone; nothing else in the document is touched
        self._surfaces.pop(session_id, None)
        self._release_session(session_id)
        self.events.emit("externally_removed", session, error=session.error)
