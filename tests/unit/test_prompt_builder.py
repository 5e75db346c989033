"""Unit tests for prompt construction."""

from quickedit.editing.prompt_builder import DEFAULT_PROMPT_TEMPLATE, PromptBuilder
from quickedit.models.edit_context import EditContext

from fakes import PARA1_ID


def make_context(text="The quick fox.", placeholders=None):
    return EditContext(
        selected_text=text,
        selected_unit_ids=[PARA1_ID],
        primary_unit_id=PARA1_ID,
        placeholder_values=placeholders or {},
    )


class TestPromptBuilder:
    """Test PromptBuilder.build."""

    def test_default_template(self):
        prompt = PromptBuilder().build(make_context(), "Make it formal")

        assert prompt.system_prompt is None
        assert prompt.messages[0]["role"] == "user"
        assert prompt.user_prompt.startswith("Make it formal\n\nOriginal text:\nThe quick fox.")
        assert "return only the complete edited text" in prompt.user_prompt
        assert PromptBuilder().template == DEFAULT_PROMPT_TEMPLATE

    def test_placeholders_use_snapshot(self):
        context = make_context(placeholders={"{above_units=1}": "Heading", "{below=2}": ""})
        template = "Before: {above_units=1}\nAfter: [{below=2}]\n{instruction}: {original}"
        prompt = PromptBuilder(template=template).build(context, "Fix")

        assert prompt.user_prompt == "Before: Heading\nAfter: []\nFix: The quick fox."

    def test_user_text_not_treated_as_placeholder(self):
        """Instruction and selection are substituted after placeholder expansion."""
        context = make_context(text="literal {above=3}", placeholders={"{above=3}": "SHOULD NOT APPEAR"})
        prompt = PromptBuilder(template="{instruction}|{original}").build(context, "say {original}")

        assert prompt.user_prompt == "say {original}|literal {above=3}"

    def test_system_and_appended_prompts(self):
        builder = PromptBuilder(system_prompt="Be terse.", appended_prompt="Keep markdown.")
        prompt = builder.build(make_context(), "Shorten")

        assert prompt.system_prompt == "Be terse."
        assert prompt.user_prompt.endswith("\n\nKeep markdown.")

    def test_blank_appended_prompt_ignored(self):
        prompt = PromptBuilder(template="{instruction}", appended_prompt="   ").build(make_context(), "Go")
        assert prompt.user_prompt == "Go"

    def test_per_call_overrides(self):
        builder = PromptBuilder(template="A {instruction}", system_prompt="Default system")
        prompt = builder.build(make_context(), "x", template="B {instruction}", system_prompt="")

        assert prompt.user_prompt == "B x"
        assert prompt.system_prompt is None
        assert prompt.instruction == "x"
