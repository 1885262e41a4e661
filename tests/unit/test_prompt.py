import pytest
from pydantic import TypeAdapter

from sitepilot.prompt import (
    InstructionPartsPrompt,
    PromptSource,
    SiteContent,
    SiteContentPrompt,
    TextPrompt,
    generate_system_prompt,
    resolve_system_prompt,
)


@pytest.fixture
def studio():
    return SiteContent.model_validate({
        "name": "Acme Dance Studio",
        "type": "dance studio",
        "personality": "warm and encouraging",
        "pages": ["home", "classes", "contact"],
        "items": [
            {"id": "ballet", "name": "Ballet", "category": "class",
             "description": "Classical ballet", "ages": "3-adult"},
            {"id": "sarah", "name": "Sarah Johnson", "category": "teacher"},
            {"id": "misc", "name": "Gift Card"},
        ],
        "faqs": [{"question": "Parking?", "answer": "Free lot out back."}],
        "contact": {"email": "info@acme.test", "phone": "555-1234"},
        "additional_context": "Closed on holidays.",
    })


class TestGenerateSystemPrompt:
    def test_role_and_personality(self, studio):
        prompt = generate_system_prompt(studio)
        assert prompt.startswith("You are the AI assistant for Acme Dance Studio, a dance studio.")
        assert "Your personality is warm and encouraging." in prompt

    def test_items_grouped_by_category(self, studio):
        prompt = generate_system_prompt(studio)
        assert "### Classs" in prompt
        assert "### Teachers" in prompt
        assert "### Others" in prompt
        assert '- **Ballet** (id: "ballet"): Classical ballet [ages: 3-adult]' in prompt

    def test_sections(self, studio):
        prompt = generate_system_prompt(studio)
        assert "Users can navigate to: home, classes, contact" in prompt
        assert "**Q: Parking?**" in prompt
        assert "- Email: info@acme.test" in prompt
        assert "- Address" not in prompt
        assert "Closed on holidays." in prompt
        assert prompt.rstrip().endswith("Reference specific items by their id when using tools")

    def test_minimal_content(self):
        prompt = generate_system_prompt(SiteContent(name="Shop"))
        assert prompt.startswith("You are the AI assistant for Shop.")
        assert "## Available Content" not in prompt
        assert "helpful and friendly" in prompt


class TestResolveSystemPrompt:
    def test_text(self):
        assert resolve_system_prompt(TextPrompt(text="Be brief.")) == "Be brief."

    def test_bare_string(self):
        assert resolve_system_prompt("Be brief.") == "Be brief."

    def test_site_content(self, studio):
        expected = generate_system_prompt(studio)
        assert resolve_system_prompt(SiteContentPrompt(content=studio)) == expected
        assert resolve_system_prompt(studio) == expected

    def test_parts(self):
        source = InstructionPartsPrompt(parts=["You help.", "", "Be brief."])
        assert resolve_system_prompt(source) == "You help.\n\nBe brief."

    def test_unsupported(self):
        with pytest.raises(TypeError):
            resolve_system_prompt(42)

    def test_tagged_union_dispatches_on_kind(self):
        adapter = TypeAdapter(PromptSource)
        assert isinstance(adapter.validate_python({"kind": "text", "text": "x"}), TextPrompt)
        assert isinstance(
            adapter.validate_python({"kind": "parts", "parts": ["a"]}),
            InstructionPartsPrompt,
        )
        assert isinstance(
            adapter.validate_python({"kind": "site_content", "content": {"name": "S"}}),
            SiteContentPrompt,
        )
