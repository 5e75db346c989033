"""Turn an accepted session into an ordered mutation plan."""

import re
from typing import Optional

import structlog

from quickedit.models.mutation import MutationPlan
from quickedit.models.session import EditSession
from quickedit.services.exceptions import MutationError, MutationPhase


logger = structlog.get_logger()

DEFAULT_BATCH_THRESHOLD = 10

# Two or more line breaks, LF or CRLF
SEGMENT_SEPARATOR = re.compile(r"(?:\r?\n){2,}")

_HEADING_LEVEL = re.compile(r"h([1-6])")
_HEADING_MARKER = re.compile(r"^#+\s*")
_BULLET_MARKER = re.compile(r"^[-*+]\s*")
_ORDERED_MARKER = re.compile(r"^\d+\.\s*")
_TASK_MARKER = re.compile(r"^[-*]\s*\[[xX ]\]\s*")
_QUOTE_MARKER = re.compile(r"^>\s*")


def split_segments(text: str) -> list[str]:
    """
    Split text into paragraph-level segments, one per unit to insert.

    Example:
        >>> split_segments("Para one.\\n\\nPara two.")
        ['Para one.', 'Para two.']
    """
    return [part.strip() for part in SEGMENT_SEPARATOR.split(text) if part.strip()]


def apply_markdown_formatting(text: str, unit_type: Optional[str], unit_subtype: Optional[str]) -> str:
    """
    Reapply a unit's structural markup to replacement text.

    Existing markers of the same kind are stripped first, so output that
    already carries them is not double-prefixed.

    Args:
        text: Replacement text
        unit_type: Node type, e.g. "NodeHeading"
        unit_subtype: Node subtype, e.g. "h2", "u", "o", "t"

    Returns:
        Formatted markdown

    Example:
        >>> apply_markdown_formatting("New Title", "NodeHeading", "h2")
        '## New Title'
    """
    if not unit_type:
        return text

    if unit_type == "NodeHeading" and unit_subtype:
        match = _HEADING_LEVEL.fullmatch(unit_subtype)
        if match:
            return "#" * int(match.group(1)) + " " + _HEADING_MARKER.sub("", text)

    elif unit_type == "NodeListItem" and unit_subtype:
        if unit_subtype == "u":
            return "- " + _BULLET_MARKER.sub("", text)
        if unit_subtype == "o":
            return "1. " + _ORDERED_MARKER.sub("", text)
        if unit_subtype == "t":
            return "- [ ] " + _TASK_MARKER.sub("", text)

    elif unit_type == "NodeBlockquote":
        return "> " + _QUOTE_MARKER.sub("", text)

    elif unit_type == "NodeCodeBlock":
        if text.split("\n", 1)[0].startswith("```"):
            return text
        return f"```\n{text}\n```"

    return text


def plan(
    session: EditSession,
    batch_supported: bool = False,
    batch_threshold: int = DEFAULT_BATCH_THRESHOLD,
) -> MutationPlan:
    """
    Build the mutation plan for an accepted session.

    Segments are inserted after the last selected unit, each anchored on
    the previous insert. Originally-selected units are deleted only after
    every insert (replace mode); insert mode keeps them.

    Args:
        session: Session whose response was accepted
        batch_supported: Whether the backend supports batch insert
        batch_threshold: Segment count above which batch insert is used

    Returns:
        Plan with all insert steps before all delete steps

    Raises:
        MutationError: (phase PLAN) if the response has no content to insert
    """
    context = session.context
    text = session.final_text

    if context.unit_type == "NodeCodeBlock" and not context.is_multi_unit:
        # Blank lines belong to the code, not to unit boundaries
        segments = [apply_markdown_formatting(text.strip("\r\n"), context.unit_type, context.unit_subtype)]
        segments = [s for s in segments if s.strip()]
    else:
        segments = split_segments(text)
        if segments and not context.is_multi_unit:
            segments[0] = apply_markdown_formatting(segments[0], context.unit_type, context.unit_subtype)

    if not segments:
        raise MutationError(MutationPhase.PLAN, "Nothing to insert: the response is empty")

    anchor_id = context.last_unit_id
    delete_ids = list(context.selected_unit_ids) if session.action_mode == "replace" else []

    strategy = "batch" if batch_supported and len(segments) > batch_threshold else "sequential"

    logger.info(
        "mutation_planned",
        session_id=session.id,
        strategy=strategy,
        segment_count=len(segments),
        delete_count=len(delete_ids),
        action_mode=session.action_mode,
    )

    return MutationPlan(
        session_id=session.id,
        strategy=strategy,
        anchor_id=anchor_id,
        segments=segments,
        delete_ids=delete_ids,
        batch_threshold=batch_threshold,
    )
