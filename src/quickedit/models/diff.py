"""Diff generation for reviewing streamed replacements.

Character-level diffs drive the inline review highlighting; line diffs
and unified diffs are used for plain-text rendering (CLI, logs).
"""

import difflib
from typing import Literal, Optional

from diff_match_patch import diff_match_patch
from pydantic import BaseModel, Field


_KINDS = {
    diff_match_patch.DIFF_DELETE: "delete",
    diff_match_patch.DIFF_EQUAL: "equal",
    diff_match_patch.DIFF_INSERT: "insert",
}


class DiffPatch(BaseModel):
    """One run of a character diff."""

    kind: Literal["equal", "insert", "delete"] = Field(
        ...,
        description="Whether the run is shared, added or removed"
    )

    value: str = Field(
        ...,
        description="Text of the run"
    )

    model_config = {"frozen": True}


class LineDiff(BaseModel):
    """Index-aligned comparison of one line."""

    line_number: int = Field(..., ge=1, description="1-based line number")
    original: Optional[str] = Field(default=None, description="Line in the original text")
    modified: Optional[str] = Field(default=None, description="Line in the modified text")
    kind: Literal["equal", "insert", "delete", "modify"] = Field(
        ...,
        description="How the line changed"
    )

    model_config = {"frozen": True}


def compute_diff(original: str, modified: str) -> list[DiffPatch]:
    """Compute a human-readable character diff.

    Runs diff-match-patch's Myers diff, then its semantic cleanup, which
    folds short coincidental matches into the surrounding edits, eliminates
    delete/insert overlaps and shifts edit boundaries onto word breaks.

    Args:
        original: Text before the edit
        modified: Text after the edit

    Returns:
        Ordered patches. Concatenating the ``equal`` and ``insert`` values
        yields ``modified``; concatenating ``equal`` and ``delete`` values
        yields ``original``.

    Example:
        >>> [(p.kind, p.value) for p in compute_diff("cat", "cut")]
        [('equal', 'c'), ('delete', 'a'), ('insert', 'u'), ('equal', 't')]
    """
    if original == modified:
        return [DiffPatch(kind="equal", value=original)]
    if not original:
        return [DiffPatch(kind="insert", value=modified)]
    if not modified:
        return [DiffPatch(kind="delete", value=original)]

    dmp = diff_match_patch()
    diffs = dmp.diff_main(original, modified)
    dmp.diff_cleanupSemantic(diffs)
    return [DiffPatch(kind=_KINDS[op], value=text) for op, text in diffs]


def line_diff(original: str, modified: str) -> list[LineDiff]:
    """Compare two texts line by line, aligned by index.

    Args:
        original: Text before the edit
        modified: Text after the edit

    Returns:
        One entry per line of the longer text
    """
    original_lines = original.split("\n")
    modified_lines = modified.split("\n")
    result = []

    for index in range(max(len(original_lines), len(modified_lines))):
        before = original_lines[index] if index < len(original_lines) else None
        after = modified_lines[index] if index < len(modified_lines) else None

        if before is None:
            kind = "insert"
        elif after is None:
            kind = "delete"
        elif before == after:
            kind = "equal"
        else:
            kind = "modify"

        result.append(LineDiff(line_number=index + 1, original=before, modified=after, kind=kind))

    return result


def generate_unified_diff(
    original: str,
    modified: str,
    fromfile: str = "original",
    tofile: str = "modified",
    context_lines: int = 3,
) -> str:
    """Generate unified diff between original and modified content.

    Lines that differ only by the presence/absence of a trailing newline
    are treated as identical to avoid showing spurious differences.

    Args:
        original: Original content
        modified: Modified content
        fromfile: Label for original content
        tofile: Label for modified content
        context_lines: Number of context lines to show

    Returns:
        Unified diff as string
    """
    original_lines = [
        line if line.endswith('\n') else line + '\n'
        for line in original.splitlines(keepends=True)
    ]
    modified_lines = [
        line if line.endswith('\n') else line + '\n'
        for line in modified.splitlines(keepends=True)
    ]

    diff_lines = difflib.unified_diff(
        original_lines,
        modified_lines,
        fromfile=fromfile,
        tofile=tofile,
        n=context_lines,
    )

    # Header lines from unified_diff may lack a trailing newline
    return "".join(line if line.endswith('\n') else line + '\n' for line in diff_lines)
