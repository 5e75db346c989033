"""Identifier helpers: unit ID validation and session/history ID generation."""

import re
import uuid

from quickedit.services.exceptions import InvalidUnitIdError


# SiYuan block IDs: 14-digit timestamp, hyphen, 7 lowercase alphanumeric chars
# Example: 20251028234416-aw9bzvx
UNIT_ID_PATTERN = re.compile(r"^[0-9]{14}-[0-9a-z]{7}$", re.IGNORECASE)


def is_valid_unit_id(unit_id: object) -> bool:
    """
    Check whether a value matches the host's unit identifier grammar.

    Args:
        unit_id: Candidate identifier (any type; non-strings are invalid)

    Returns:
        True if the identifier is well-formed
    """
    return isinstance(unit_id, str) and UNIT_ID_PATTERN.match(unit_id) is not None


def validate_unit_id(unit_id: object) -> str:
    """
    Validate a unit identifier before it is interpolated into a query.

    Args:
        unit_id: Identifier to validate

    Returns:
        The identifier, unchanged

    Raises:
        InvalidUnitIdError: If the identifier does not match the grammar

    Example:
        >>> validate_unit_id("20251028234416-aw9bzvx")
        '20251028234416-aw9bzvx'
        >>> validate_unit_id("x' OR '1'='1")
        Traceback (most recent call last):
        ...
        InvalidUnitIdError: Invalid unit ID format: x' OR '1'='1
    """
    if not is_valid_unit_id(unit_id):
        raise InvalidUnitIdError(str(unit_id))
    return unit_id  # type: ignore[return-value]


def generate_session_id() -> str:
    """Generate a unique edit session identifier."""
    return f"edit_{uuid.uuid4().hex[:12]}"


def generate_history_id() -> str:
    """Generate a unique history entry identifier."""
    return f"history_{uuid.uuid4().hex[:12]}"
