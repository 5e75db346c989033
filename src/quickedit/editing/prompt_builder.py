"""Prompt construction for inline edits."""

import re
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from quickedit.editing.context_resolver import apply_placeholders
from quickedit.models.edit_context import EditContext, ResolvedContext


logger = structlog.get_logger()

DEFAULT_PROMPT_TEMPLATE = """{instruction}

Original text:
{original}

Important: return only the complete edited text. Do not add any preamble, explanation, \
notes or formatting markers (such as "Here is the revised text:"). Output the edited text directly."""

_TEXT_FIELDS = re.compile(r"\{(instruction|original)\}")


class BuiltPrompt(BaseModel):
    """Messages ready for the generation service."""

    system_prompt: Optional[str] = Field(default=None)
    messages: list[dict[str, str]] = Field(..., min_length=1)
    instruction: str = Field(...)

    @property
    def user_prompt(self) -> str:
        return self.messages[-1]["content"]


class PromptBuilder:
    """
    Render the user prompt for an edit session.

    Context placeholders are expanded first, from the values captured in
    the ``EditContext`` at trigger time; ``{instruction}`` and ``{original}``
    are substituted afterwards in a single pass, so user text is never
    interpreted as a placeholder.

    Example:
        >>> builder = PromptBuilder(system_prompt="You are a careful editor.")
        >>> prompt = builder.build(context, "Make it formal")
        >>> prompt.messages[0]["role"]
        'user'
    """

    def __init__(
        self,
        template: Optional[str] = None,
        system_prompt: Optional[str] = None,
        appended_prompt: Optional[str] = None,
    ):
        self.template = template or DEFAULT_PROMPT_TEMPLATE
        self.system_prompt = system_prompt
        self.appended_prompt = appended_prompt

    def build(
        self,
        context: EditContext,
        instruction: str,
        template: Optional[str] = None,
        system_prompt: Optional[str] = None,
        appended_prompt: Optional[str] = None,
    ) -> BuiltPrompt:
        """
        Build the prompt for one run of a session.

        Args:
            context: Resolved selection snapshot
            instruction: User instruction
            template: Overrides the builder's template for this call
            system_prompt: Overrides the builder's system prompt
            appended_prompt: Overrides the builder's appended prompt

        Returns:
            System prompt plus a single user message
        """
        template = template or self.template
        system_prompt = system_prompt if system_prompt is not None else self.system_prompt
        appended_prompt = appended_prompt if appended_prompt is not None else self.appended_prompt

        rendered = apply_placeholders(template, ResolvedContext(values=context.placeholder_values))

        values = {"instruction": instruction, "original": context.selected_text}
        user_prompt = _TEXT_FIELDS.sub(lambda m: values[m.group(1)], rendered)

        if appended_prompt and appended_prompt.strip():
            user_prompt += "\n\n" + appended_prompt

        logger.debug(
            "prompt_built",
            template_length=len(template),
            prompt_length=len(user_prompt),
            placeholders=len(context.placeholder_values),
            has_appended_prompt=bool(appended_prompt and appended_prompt.strip()),
        )

        return BuiltPrompt(
            system_prompt=system_prompt or None,
            messages=[{"role": "user", "content": user_prompt}],
            instruction=instruction,
        )
