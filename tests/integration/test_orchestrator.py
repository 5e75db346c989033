"""Integration tests for the edit orchestrator against in-memory collaborators."""

import asyncio

import pytest
import structlog

from quickedit.editing.context_resolver import SelectionSource
from quickedit.models.config import EditConfig
from quickedit.models.session import SessionState
from quickedit.orchestration.monitor import InMemoryChangeSource
from quickedit.orchestration.orchestrator import EditOrchestrator
from quickedit.services.exceptions import (
    GenerationError,
    InvalidTransitionError,
    SessionBusyError,
    SessionNotFoundError,
    StoreError,
)

from fakes import (
    PARA1_ID,
    PARA2_ID,
    FakeDocumentStore,
    FakeGenerationService,
    FakePreviewSurface,
    wait_for_state,
)


ORIGINAL_CONTENTS = ["Intro", "First paragraph.", "Second paragraph.", "", "Item one", "Item two", "Last paragraph."]


class GatedStore(FakeDocumentStore):
    """Store whose inserts wait until ``gate`` is set."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()
        self.insert_started = asyncio.Event()

    async def insert_unit(self, content, anchor_id):
        self.insert_started.set()
        await self.gate.wait()
        return await super().insert_unit(content, anchor_id)


@pytest.fixture
def change_source():
    return InMemoryChangeSource()


@pytest.fixture
def surfaces(change_source):
    """Created preview surfaces by session id; each reports its removal to the change source."""
    return {}


@pytest.fixture
def make_orchestrator(store, tree, edit_config, change_source, surfaces):
    def factory(generation, config=None, target_store=None):
        def surface_factory(session):
            surface = FakePreviewSurface(session.id, source=change_source)
            surfaces[session.id] = surface
            return surface

        return EditOrchestrator(
            target_store or store,
            generation,
            tree=tree,
            config=config or edit_config,
            change_source=change_source,
            surface_factory=surface_factory,
        )

    return factory


def cursor_on(tree, unit_id):
    return SelectionSource(cursor=tree.node(unit_id))


class TestTriggerAndAccept:
    """Full flow from trigger to a committed edit."""

    @pytest.mark.asyncio
    async def test_accept_replaces_selection(self, make_orchestrator, store, tree, surfaces):
        orchestrator = make_orchestrator(FakeGenerationService(chunks=["Better ", "first paragraph."]))
        events = []
        orchestrator.subscribe(lambda e: events.append(e.name))

        session_id = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "Improve it")
        session = await orchestrator.wait_for_review(session_id)
        assert session.state == SessionState.REVIEWING
        assert session.accumulated_text == "Better first paragraph."

        await orchestrator.accept(session_id)

        assert session.state == SessionState.APPLIED
        assert store.document_contents()[:3] == ["Intro", "Better first paragraph.", "Second paragraph."]
        assert PARA1_ID not in store.units
        assert surfaces[session_id].removed
        assert events == ["created", "streaming_chunk", "streaming_chunk", "review_ready", "applied"]

        entry = orchestrator.history.last()
        assert entry.original_content == "First paragraph."
        assert entry.modified_content == "Better first paragraph."
        assert entry.unit_id == PARA1_ID
        assert entry.action_mode == "replace"
        assert len(entry.inserted_unit_ids) == 1

    @pytest.mark.asyncio
    async def test_insert_keeps_original(self, make_orchestrator, store, tree):
        orchestrator = make_orchestrator(FakeGenerationService(chunks=["A follow-up sentence."]))

        session_id = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "Continue", action_mode="insert")
        await orchestrator.wait_for_review(session_id)
        session = await orchestrator.insert(session_id)

        assert session.state == SessionState.APPLIED
        assert session.action_mode == "insert"
        assert store.document_contents()[1:3] == ["First paragraph.", "A follow-up sentence."]
        assert not any(c[0] == "delete_unit" for c in store.calls)
        assert orchestrator.history.last().action_mode == "insert"

    @pytest.mark.asyncio
    async def test_multi_unit_selection_split_into_paragraphs(self, make_orchestrator, store, tree):
        orchestrator = make_orchestrator(FakeGenerationService(chunks=["Merged one.\n\n", "Merged two."]))
        source = SelectionSource(selected_nodes=[tree.node(PARA1_ID), tree.node(PARA2_ID)])

        session_id = await orchestrator.trigger_edit(source, "Tighten")
        await orchestrator.wait_for_review(session_id)
        await orchestrator.accept(session_id)

        assert store.document_contents()[:3] == ["Intro", "Merged one.", "Merged two."]
        inserts = [c for c in store.calls if c[0] == "insert_unit"]
        assert inserts[0][2] == PARA2_ID

    @pytest.mark.asyncio
    async def test_nothing_to_edit_returns_none(self, make_orchestrator, store, tree):
        orchestrator = make_orchestrator(FakeGenerationService())

        assert await orchestrator.trigger_edit(SelectionSource(), "Fix") is None
        assert await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "   ") is None
        assert orchestrator.sessions() == []
        assert store.mutation_calls() == []

    @pytest.mark.asyncio
    async def test_failing_event_handler_is_harmless(self, make_orchestrator, tree):
        orchestrator = make_orchestrator(FakeGenerationService())

        def broken(event):
            raise RuntimeError("renderer crashed")

        orchestrator.subscribe(broken)
        session_id = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "Fix")
        await orchestrator.wait_for_review(session_id)
        session = await orchestrator.accept(session_id)

        assert session.state == SessionState.APPLIED

    @pytest.mark.asyncio
    async def test_accept_requires_review(self, make_orchestrator, tree):
        orchestrator = make_orchestrator(FakeGenerationService(chunks=[]))
        session_id = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "Fix")
        session = await orchestrator.wait_for_review(session_id)

        assert session.state == SessionState.ERROR
        with pytest.raises(InvalidTransitionError):
            await orchestrator.accept(session_id)

    @pytest.mark.asyncio
    async def test_unknown_session(self, make_orchestrator):
        orchestrator = make_orchestrator(FakeGenerationService())
        with pytest.raises(SessionNotFoundError):
            await orchestrator.accept("edit_missing")


class TestFailures:
    """Error and partial-failure paths."""

    @pytest.mark.asyncio
    async def test_retry_after_generation_error(self, make_orchestrator, tree):
        generation = FakeGenerationService()
        generation.runs = [[GenerationError("Model endpoint returned HTTP 500")], ["Fixed text."]]
        orchestrator = make_orchestrator(generation)

        session_id = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "Fix")
        session = await orchestrator.wait_for_review(session_id)
        assert session.state == SessionState.ERROR
        assert session.error == "Model endpoint returned HTTP 500"

        await orchestrator.retry(session_id)
        await orchestrator.wait_for_review(session_id)

        assert session.state == SessionState.REVIEWING
        assert session.accumulated_text == "Fixed text."
        assert session.error is None
        assert session.retry_count == 1

    @pytest.mark.asyncio
    async def test_insert_failure_leaves_document_untouched(self, make_orchestrator, store, tree):
        orchestrator = make_orchestrator(FakeGenerationService(chunks=["New."]))
        store.fail_insert_at = 1

        session_id = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "Fix")
        await orchestrator.wait_for_review(session_id)
        session = await orchestrator.accept(session_id)

        assert session.state == SessionState.ERROR
        assert "insert rejected" in session.error
        assert store.document_contents() == ORIGINAL_CONTENTS
        assert len(orchestrator.history) == 0

        # A failed apply can be retried
        await orchestrator.retry(session_id)
        await orchestrator.wait_for_review(session_id)
        assert session.state == SessionState.REVIEWING

    @pytest.mark.asyncio
    async def test_delete_failure_is_partial_success(self, make_orchestrator, store, tree):
        orchestrator = make_orchestrator(FakeGenerationService(chunks=["New."]))
        store.fail_delete_ids = {PARA1_ID}
        applied = []
        orchestrator.subscribe(lambda e: applied.append(e.data), events=["applied"])

        session_id = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "Fix")
        await orchestrator.wait_for_review(session_id)
        session = await orchestrator.accept(session_id)

        assert session.state == SessionState.APPLIED
        assert PARA1_ID in session.partial_failure
        assert applied[0]["partial_failure"] == session.partial_failure
        assert len(orchestrator.history) == 1

    @pytest.mark.asyncio
    async def test_capability_error_falls_back_to_sequential(self, make_orchestrator, store, tree):
        async def broken_capability_check():
            raise StoreError("get_version", "unreachable")

        store.supports_batch_insert = broken_capability_check
        orchestrator = make_orchestrator(FakeGenerationService(chunks=["New."]))

        session_id = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "Fix")
        await orchestrator.wait_for_review(session_id)
        session = await orchestrator.accept(session_id)

        assert session.state == SessionState.APPLIED
        assert any(c[0] == "insert_unit" for c in store.calls)


class TestUndo:
    """Single-step undo of committed edits."""

    @pytest.mark.asyncio
    async def test_undo_with_empty_history_is_noop(self, make_orchestrator, store):
        orchestrator = make_orchestrator(FakeGenerationService())

        result = await orchestrator.undo_last()

        assert result.undone is False
        assert store.mutation_calls() == []

    @pytest.mark.asyncio
    async def test_undo_restores_original(self, make_orchestrator, store, tree):
        orchestrator = make_orchestrator(FakeGenerationService(chunks=["One.\n\nTwo."]))
        session_id = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "Split")
        await orchestrator.wait_for_review(session_id)
        await orchestrator.accept(session_id)
        inserted = orchestrator.history.last().inserted_unit_ids
        assert len(inserted) == 2

        result = await orchestrator.undo_last()

        assert result.undone
        assert result.restored_unit_id == inserted[0]
        assert result.deleted_unit_ids == [inserted[1]]
        assert store.document_contents() == ORIGINAL_CONTENTS
        assert len(orchestrator.history) == 0

    @pytest.mark.asyncio
    async def test_undo_removes_exactly_one_entry(self, make_orchestrator, store, tree):
        orchestrator = make_orchestrator(FakeGenerationService(chunks=["Changed."]))
        for unit_id in (PARA1_ID, PARA2_ID):
            session_id = await orchestrator.trigger_edit(cursor_on(tree, unit_id), "Change")
            await orchestrator.wait_for_review(session_id)
            await orchestrator.accept(session_id)
        assert len(orchestrator.history) == 2

        result = await orchestrator.undo_last()

        assert result.entry.unit_id == PARA2_ID
        assert len(orchestrator.history) == 1
        assert store.document_contents()[1:3] == ["Changed.", "Second paragraph."]

    @pytest.mark.asyncio
    async def test_undo_insert_only_deletes(self, make_orchestrator, store, tree):
        orchestrator = make_orchestrator(FakeGenerationService(chunks=["Extra."]))
        session_id = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "Add", action_mode="insert")
        await orchestrator.wait_for_review(session_id)
        await orchestrator.insert(session_id)

        result = await orchestrator.undo_last()

        assert result.undone
        assert result.restored_unit_id is None
        assert not any(c[0] == "update_unit" for c in store.calls)
        assert store.document_contents() == ORIGINAL_CONTENTS

    @pytest.mark.asyncio
    async def test_failed_restore_keeps_entry(self, make_orchestrator, store, tree):
        orchestrator = make_orchestrator(FakeGenerationService(chunks=["Changed."]))
        session_id = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "Change")
        await orchestrator.wait_for_review(session_id)
        await orchestrator.accept(session_id)
        store.failures["update_unit"] = StoreError("update_unit", "kernel busy")

        result = await orchestrator.undo_last()

        assert result.undone is False
        assert result.error == "kernel busy"
        assert len(orchestrator.history) == 1


class TestExternalRemoval:
    """Preview surfaces removed outside the engine."""

    @pytest.mark.asyncio
    async def test_removal_while_streaming(self, make_orchestrator, store, tree, change_source):
        generation = FakeGenerationService(chunks=["partial"], hang=True)
        orchestrator = make_orchestrator(generation)
        events = []
        orchestrator.subscribe(lambda e: events.append(e.name))

        session_id = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "Fix")
        session = orchestrator.get_session(session_id)
        await wait_for_state(session, SessionState.STREAMING)

        change_source.remove_surface(session_id)
        assert session.state == SessionState.EXTERNALLY_REMOVED

        await asyncio.wait_for(orchestrator.wait_for_review(session_id), timeout=2)
        assert session.state == SessionState.EXTERNALLY_REMOVED
        assert "removed externally" in session.error
        assert generation.closed == 1
        assert store.mutation_calls() == []
        assert events[-1] == "externally_removed"
        assert "rejected" not in events

    @pytest.mark.asyncio
    async def test_removal_while_reviewing(self, make_orchestrator, store, tree, change_source):
        orchestrator = make_orchestrator(FakeGenerationService())
        session_id = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "Fix")
        await orchestrator.wait_for_review(session_id)

        change_source.remove_surface(session_id)

        session = orchestrator.get_session(session_id)
        assert session.state == SessionState.EXTERNALLY_REMOVED
        with pytest.raises(InvalidTransitionError):
            await orchestrator.accept(session_id)
        assert store.mutation_calls() == []

    @pytest.mark.asyncio
    async def test_own_surface_removal_not_treated_as_external(self, make_orchestrator, tree, surfaces):
        """The preview removed during accept reports to the change source while the monitor is paused."""
        orchestrator = make_orchestrator(FakeGenerationService())
        events = []
        orchestrator.subscribe(lambda e: events.append(e.name))

        session_id = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "Fix")
        await orchestrator.wait_for_review(session_id)
        session = await orchestrator.accept(session_id)

        assert surfaces[session_id].removed
        assert session.state == SessionState.APPLIED
        assert "externally_removed" not in events
        assert not orchestrator.monitor.is_paused

    @pytest.mark.asyncio
    async def test_cancel_removes_surface_without_external_event(self, make_orchestrator, tree, surfaces):
        generation = FakeGenerationService(hang=True)
        orchestrator = make_orchestrator(generation)

        session_id = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "Fix")
        session = orchestrator.get_session(session_id)
        await wait_for_state(session, SessionState.STREAMING)

        assert await orchestrator.cancel(session_id, reason="user_cancelled") is True

        assert session.state == SessionState.REJECTED
        assert surfaces[session_id].removed
        assert generation.last_token.reason == "user_cancelled"
        assert await orchestrator.cancel(session_id) is False


    @pytest.mark.asyncio
    async def test_other_session_removed_during_accept(self, make_orchestrator, store, tree, surfaces):
        """Muting the committing session does not hide another session's removal."""
        orchestrator = make_orchestrator(FakeGenerationService(chunks=["New."]))
        events = []
        orchestrator.subscribe(lambda e: events.append((e.name, e.session.id)))

        first = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "One")
        second = await orchestrator.trigger_edit(cursor_on(tree, PARA2_ID), "Two")
        await orchestrator.wait_for_review(first)
        await orchestrator.wait_for_review(second)
        surfaces[first].also_removes.append(second)

        await orchestrator.accept(first)

        assert orchestrator.get_session(first).state == SessionState.APPLIED
        assert orchestrator.get_session(second).state == SessionState.EXTERNALLY_REMOVED
        assert ("externally_removed", second) in events
        assert ("externally_removed", first) not in events
        assert not orchestrator.monitor.is_paused

    @pytest.mark.asyncio
    async def test_other_session_removed_during_reject(self, make_orchestrator, tree, surfaces):
        orchestrator = make_orchestrator(FakeGenerationService(chunks=["New."]))

        first = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "One")
        second = await orchestrator.trigger_edit(cursor_on(tree, PARA2_ID), "Two")
        await orchestrator.wait_for_review(first)
        await orchestrator.wait_for_review(second)
        surfaces[first].also_removes.append(second)

        await orchestrator.reject(first)

        assert orchestrator.get_session(first).state == SessionState.REJECTED
        assert orchestrator.get_session(second).state == SessionState.EXTERNALLY_REMOVED


class TestApplyingIsAtomic:
    """A session being applied cannot be cancelled or removed."""

    @pytest.mark.asyncio
    async def test_cancel_and_removal_during_apply(self, make_orchestrator, tree, change_source):
        store = GatedStore()
        orchestrator = make_orchestrator(FakeGenerationService(chunks=["New."]), target_store=store)

        session_id = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "Fix")
        await orchestrator.wait_for_review(session_id)
        apply_task = asyncio.create_task(orchestrator.accept(session_id))
        await asyncio.wait_for(store.insert_started.wait(), timeout=2)

        session = orchestrator.get_session(session_id)
        assert session.state == SessionState.APPLYING
        with pytest.raises(SessionBusyError):
            await orchestrator.cancel(session_id)
        with pytest.raises(SessionBusyError):
            await orchestrator.reject(session_id)
        with pytest.raises(SessionBusyError):
            await orchestrator.dispose(session_id)

        change_source.remove_surface(session_id)
        assert session.state == SessionState.APPLYING

        store.gate.set()
        await asyncio.wait_for(apply_task, timeout=2)
        assert session.state == SessionState.APPLIED


class TestQueueing:
    """Concurrency limit, pausing and bulk cancellation."""

    @pytest.mark.asyncio
    async def test_second_session_waits_for_slot(self, make_orchestrator, tree):
        generation = FakeGenerationService(hang=True)
        orchestrator = make_orchestrator(generation, config=EditConfig(
            max_concurrent=1, insert_settle_delay=0, delete_settle_delay=0,
        ))

        first = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "One")
        second = await orchestrator.trigger_edit(cursor_on(tree, PARA2_ID), "Two")
        await wait_for_state(orchestrator.get_session(first), SessionState.STREAMING)

        stats = orchestrator.statistics()
        assert stats.processing == 1
        assert stats.queued == 1
        assert orchestrator.get_session(second).state == SessionState.INPUT_INSTRUCTION

        cancelled = await orchestrator.cancel_all()

        assert cancelled == [first, second]
        assert orchestrator.get_session(first).state == SessionState.REJECTED
        assert orchestrator.get_session(second).state == SessionState.REJECTED
        assert len(generation.calls) == 1
        assert orchestrator.statistics().queued == 0

    @pytest.mark.asyncio
    async def test_cancel_queued_session(self, make_orchestrator, tree, surfaces):
        orchestrator = make_orchestrator(FakeGenerationService(hang=True))

        first = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "One")
        second = await orchestrator.trigger_edit(cursor_on(tree, PARA2_ID), "Two")
        await wait_for_state(orchestrator.get_session(first), SessionState.STREAMING)

        assert await orchestrator.cancel(second) is True
        assert orchestrator.get_session(second).state == SessionState.REJECTED
        assert surfaces[second].removed
        assert orchestrator.get_session(first).state == SessionState.STREAMING

        await orchestrator.shutdown()
        assert orchestrator.get_session(first).state == SessionState.REJECTED

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, make_orchestrator, tree):
        orchestrator = make_orchestrator(FakeGenerationService())
        orchestrator.pause()

        session_id = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "Fix")
        for _ in range(5):
            await asyncio.sleep(0)
        assert orchestrator.statistics().is_paused
        assert orchestrator.get_session(session_id).state == SessionState.INPUT_INSTRUCTION

        orchestrator.resume()
        session = await orchestrator.wait_for_review(session_id)
        assert session.state == SessionState.REVIEWING

    @pytest.mark.asyncio
    async def test_dispose_forgets_session(self, make_orchestrator, tree):
        orchestrator = make_orchestrator(FakeGenerationService())
        session_id = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "Fix")
        await orchestrator.wait_for_review(session_id)

        await orchestrator.dispose(session_id)

        assert orchestrator.get_session(session_id) is None
        assert orchestrator.sessions() == []
        assert orchestrator.statistics().processing == 0


class ContextRecordingGeneration(FakeGenerationService):
    """Generation service that records the bound log context of each run."""

    def __init__(self):
        super().__init__(chunks=["New."])
        self.bound = []

    async def stream(self, messages, system_prompt=None, token=None):
        self.bound.append(structlog.contextvars.get_contextvars().get("session_id"))
        async for chunk in super().stream(messages, system_prompt, token):
            yield chunk


class ContextRecordingStore(FakeDocumentStore):
    """Store that records the bound log context of each insert."""

    def __init__(self):
        super().__init__()
        self.bound = []

    async def insert_unit(self, content, anchor_id):
        self.bound.append(structlog.contextvars.get_contextvars().get("session_id"))
        return await super().insert_unit(content, anchor_id)


class TestSessionLogContext:
    """Log lines from collaborators carry the session id."""

    @pytest.mark.asyncio
    async def test_session_id_bound_for_generation_and_store(self, make_orchestrator, tree):
        generation = ContextRecordingGeneration()
        store = ContextRecordingStore()
        orchestrator = make_orchestrator(generation, target_store=store)

        session_id = await orchestrator.trigger_edit(cursor_on(tree, PARA1_ID), "Fix")
        await orchestrator.wait_for_review(session_id)
        await orchestrator.accept(session_id)

        assert generation.bound == [session_id]
        assert store.bound == [session_id]
        assert "session_id" not in structlog.contextvars.get_contextvars()
