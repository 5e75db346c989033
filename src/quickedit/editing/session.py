"""Edit session state machine: one generation run from prompt to review."""

import asyncio
import re
import warnings
from typing import AsyncIterator, Callable, Optional, Protocol, Sequence

import structlog

from quickedit.editing.prompt_builder import PromptBuilder
from quickedit.models.config import FilterRuleConfig
from quickedit.models.diff import compute_diff
from quickedit.models.session import EditSession, SessionState
from quickedit.services.exceptions import GenerationError, IntegrityWarning
from quickedit.services.response_filter import ResponseFilter
from quickedit.utils.cancellation import CancellationToken


logger = structlog.get_logger()

# Newline that is not the final character of the text
_INNER_NEWLINE = re.compile(r"\n(?!\Z)")

EventCallback = Callable[..., None]


class GenerationService(Protocol):
    """Streaming text generation, cancellable through the token."""

    def stream(
        self,
        messages: list[dict[str, str]],
        system_prompt: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[str]:
        ...


def apply_indent(text: str, prefix: str) -> str:
    """Prefix every line after the first with ``prefix``; a trailing newline stays bare."""
    if not prefix:
        return text
    return _INNER_NEWLINE.sub(lambda m: "\n" + prefix, text)


class IndentWriter:
    """
    Incremental ``apply_indent`` over a chunk stream.

    A newline that ends a chunk is prefixed lazily when the next non-empty
    chunk arrives, so the concatenated output always equals
    ``apply_indent`` of the concatenated input.
    """

    def __init__(self, prefix: str):
        self.prefix = prefix
        self._pending = False

    def feed(self, chunk: str) -> str:
        if not self.prefix or not chunk:
            return chunk
        out = (self.prefix if self._pending else "") + apply_indent(chunk, self.prefix)
        self._pending = chunk.endswith("\n")
        return out


class SessionRunner:
    """
    Drive one session through PROCESSING -> STREAMING -> REVIEWING.

    Every outcome is terminal for the run: the session ends in REVIEWING,
    ERROR (with one human-readable message) or REJECTED (token fired).

    Example:
        >>> runner = SessionRunner(llm_client, PromptBuilder(), on_event=bus.emit)
        >>> await runner.run(session, CancellationToken())
        >>> session.state
        <SessionState.REVIEWING: 'reviewing'>
    """

    def __init__(
        self,
        generation: GenerationService,
        prompt_builder: Optional[PromptBuilder] = None,
        response_filter: Optional[ResponseFilter] = None,
        filter_rules: Sequence[FilterRuleConfig] = (),
        on_event: Optional[EventCallback] = None,
    ):
        self.generation = generation
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.response_filter = response_filter or ResponseFilter()
        self.filter_rules = list(filter_rules)
        self.on_event = on_event

    def _emit(self, event: str, session: EditSession, **data) -> None:
        if self.on_event is not None:
            self.on_event(event, session, **data)

    async def run(self, session: EditSession, token: CancellationToken) -> EditSession:
        """
        Generate a replacement for the session's selection.

        Args:
            session: Session in INPUT_INSTRUCTION, PROCESSING, REVIEWING or ERROR
            token: Cancellation token owned by the orchestrator

        Returns:
            The same session, in REVIEWING, ERROR or REJECTED

        Raises:
            InvalidTransitionError: If the session cannot start a run
        """
        if session.state != SessionState.PROCESSING:
            session.transition_to(SessionState.PROCESSING)
        session.reset_output()
        logger.info("session_state_changed", session_id=session.id, state=session.state.value)

        indent = IndentWriter(session.context.indent_prefix)
        try:
            token.raise_if_cancelled()
            prompt = self.prompt_builder.build(session.context, session.instruction)

            stream = self.generation.stream(prompt.messages, prompt.system_prompt, token)
            async for chunk in token.guard(stream):
                if not chunk:
                    continue
                if session.state == SessionState.PROCESSING:
                    session.transition_to(SessionState.STREAMING)
                    logger.info("session_state_changed", session_id=session.id, state=session.state.value)

                rendered = indent.feed(chunk)
                session.chunk_count += 1
                session.total_chunk_chars += len(chunk)
                session.accumulated_text += chunk
                session.accumulated_text_with_indent += rendered
                self._check_integrity(session)

                logger.debug(
                    "stream_chunk",
                    session_id=session.id,
                    chunk_num=session.chunk_count,
                    length=len(chunk),
                )
                self._emit("streaming_chunk", session, chunk=chunk, rendered=rendered)

            token.raise_if_cancelled()

        except GenerationError as e:
            if e.cancelled or token.cancelled:
                self._reject(session, token)
            else:
                self._fail(session, e.message)
            return session

        except asyncio.CancelledError:
            self._reject(session, token)
            raise

        except Exception as e:
            logger.error(
                "generation_failed",
                session_id=session.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._fail(session, f"Generation failed: {e}")
            return session

        self._complete(session)
        return session

    def _check_integrity(self, session: EditSession) -> None:
        if len(session.accumulated_text) != session.total_chunk_chars:
            logger.warning(
                "stream_integrity_mismatch",
                session_id=session.id,
                accumulated_length=len(session.accumulated_text),
                expected_length=session.total_chunk_chars,
                chunk_count=session.chunk_count,
            )
            warnings.warn(
                f"Session {session.id}: accumulated {len(session.accumulated_text)} chars, "
                f"received {session.total_chunk_chars}",
                IntegrityWarning,
                stacklevel=2,
            )

    def _complete(self, session: EditSession) -> None:
        if self.filter_rules:
            result = self.response_filter.apply(session.accumulated_text, self.filter_rules)
            if result.changed:
                session.accumulated_text = result.filtered_text
                session.accumulated_text_with_indent = apply_indent(
                    result.filtered_text, session.context.indent_prefix
                )

        if not session.accumulated_text.strip():
            self._fail(session, "The model returned an empty response")
            return

        session.diff_patches = compute_diff(session.original_text, session.accumulated_text)
        session.transition_to(SessionState.REVIEWING)

        logger.info(
            "session_state_changed",
            session_id=session.id,
            state=session.state.value,
            chunk_count=session.chunk_count,
            response_length=len(session.accumulated_text),
            patch_count=len(session.diff_patches),
        )
        self._emit("review_ready", session, diff=session.diff_patches)

    def _fail(self, session: EditSession, message: str) -> None:
        if not session.can_transition_to(SessionState.ERROR):
            return
        session.error = message
        session.transition_to(SessionState.ERROR)
        logger.error("session_failed", session_id=session.id, error=message)
        self._emit("error", session, error=message)

    def _reject(self, session: EditSession, token: CancellationToken) -> None:
        # The orchestrator may already have moved the session (e.g. external removal)
        if not session.can_transition_to(SessionState.REJECTED) or session.is_terminal:
            return
        session.transition_to(SessionState.REJECTED)
        logger.info(
            "session_state_changed",
            session_id=session.id,
            state=session.state.value,
            reason=token.reason,
        )
        self._emit("rejected", session, reason=token.reason)
