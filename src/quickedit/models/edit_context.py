"""EditContext and placeholder models produced by the context resolver."""

from pydantic import BaseModel, Field, model_validator
from typing import Literal, Optional


class EditContext(BaseModel):
    """Immutable snapshot of a resolved selection, captured when an edit is triggered."""

    selected_text: str = Field(
        ...,
        min_length=1,
        description="Text the user selected (or the whole unit for cursor fallback)"
    )

    selected_unit_ids: list[str] = Field(
        ...,
        min_length=1,
        description="Units spanned by the selection, in document order"
    )

    primary_unit_id: str = Field(
        ...,
        description="Unit the edit is anchored to (first selected unit)"
    )

    unit_type: Optional[str] = Field(
        default=None,
        description="Node type of the first selected unit"
    )

    unit_subtype: Optional[str] = Field(
        default=None,
        description="Node subtype of the first selected unit (heading level, list kind)"
    )

    context_before: Optional[str] = Field(
        default=None,
        description="Surrounding content above the selection, if requested"
    )

    context_after: Optional[str] = Field(
        default=None,
        description="Surrounding content below the selection, if requested"
    )

    indent_prefix: str = Field(
        default="",
        description="Leading whitespace of the selection's first line (spaces/tabs verbatim)"
    )

    root_id: Optional[str] = Field(
        default=None,
        description="Document containing the selection"
    )

    placeholder_values: dict[str, str] = Field(
        default_factory=dict,
        description="Context placeholders resolved at trigger time ('{above=3}' -> text)"
    )

    @model_validator(mode="after")
    def check_primary_selected(self) -> "EditContext":
        """The primary unit must be one of the selected units."""
        if self.primary_unit_id not in self.selected_unit_ids:
            raise ValueError(
                f"primary_unit_id {self.primary_unit_id} is not among the selected units"
            )
        return self

    @property
    def is_multi_unit(self) -> bool:
        """True if the selection spans more than one unit."""
        return len(self.selected_unit_ids) > 1

    @property
    def last_unit_id(self) -> str:
        """Last selected unit (insertion anchor)."""
        return self.selected_unit_ids[-1]

    model_config = {"frozen": True}


class PlaceholderSpec(BaseModel):
    """One parsed occurrence of a context placeholder in a template."""

    original: str = Field(..., description="Matched text, e.g. '{above=5}'")
    count: int = Field(..., ge=1, le=100, description="Clamped number of lines or units")
    direction: Literal["above", "below"] = Field(..., description="Which side of the selection")
    granularity: Literal["line", "unit"] = Field(..., description="Count lines or whole units")
    start: int = Field(..., ge=0, description="Offset of the match in the template")
    length: int = Field(..., ge=1, description="Length of the match")

    model_config = {"frozen": True}


class ResolvedContext(BaseModel):
    """Placeholder text mapped to the content it expands to."""

    values: dict[str, str] = Field(
        default_factory=dict,
        description="Placeholder text (e.g. '{below_units=2}') -> resolved content"
    )

    def content_for(self, placeholder: str) -> str:
        """Resolved content for a placeholder; empty string when unresolved."""
        return self.values.get(placeholder, "")

    @property
    def above(self) -> Optional[str]:
        """Joined content of all resolved 'above' placeholders, if any."""
        parts = [v for k, v in self.values.items() if k.startswith("{above") and v]
        return "\n\n".join(parts) if parts else None

    @property
    def below(self) -> Optional[str]:
        """Joined content of all resolved 'below' placeholders, if any."""
        parts = [v for k, v in self.values.items() if k.startswith("{below") and v]
        return "\n\n".join(parts) if parts else None

    model_config = {"frozen": True}
