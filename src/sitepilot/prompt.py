"""System prompts: the three accepted shapes and their single resolution point.

Configuration may carry a system prompt as plain text, as structured
:class:`SiteContent` from which a prompt is generated, or as a list of
instruction parts in the shape Gemini-style providers take directly.
:func:`resolve_system_prompt` turns any of them into the one string
the decoder works with.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

_INSTRUCTIONS = """
## Instructions
- When users ask about specific items, provide detailed information from the content above
- Use the available tools to navigate users to relevant pages or show them specific items
- If you don't know something, say so honestly - don't make up information
- Keep responses concise but helpful
- Reference specific items by their id when using tools"""


class SiteContentItem(BaseModel):
    """A product, service, team member or similar entry on the site.

    Extra fields are kept and listed after the description.
    """

    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    category: str | None = None
    description: str | None = None


class FAQ(BaseModel):
    question: str
    answer: str


class Contact(BaseModel):
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    hours: str | None = None


class SiteContent(BaseModel):
    name: str
    description: str | None = None
    type: str | None = None
    personality: str = "helpful and friendly"
    pages: list[str] = Field(default_factory=list)
    items: list[SiteContentItem] = Field(default_factory=list)
    faqs: list[FAQ] = Field(default_factory=list)
    contact: Contact | None = None
    additional_context: str | None = None


def _item_line(item: SiteContentItem) -> str:
    line = f'- **{item.name}** (id: "{item.id}")'
    if item.description:
        line += f": {item.description}"
    extra = ", ".join(f"{k}: {v}" for k, v in (item.model_extra or {}).items())
    if extra:
        line += f" [{extra}]"
    return line


def generate_system_prompt(content: SiteContent) -> str:
    """Generate a well-structured assistant prompt from site content."""
    sections: list[str] = []

    kind = f", a {content.type}" if content.type else ""
    about = f" {content.description}" if content.description else ""
    sections.append(f"You are the AI assistant for {content.name}{kind}.{about}")
    sections.append(
        f"Your personality is {content.personality}. "
        "Be conversational but concise."
    )

    by_category: dict[str, list[SiteContentItem]] = {}
    for item in content.items:
        by_category.setdefault(item.category or "other", []).append(item)

    if by_category:
        sections.append("\n## Available Content\n")
        for category, items in by_category.items():
            sections.append(f"### {category[:1].upper()}{category[1:]}s")
            sections.extend(_item_line(item) for item in items)
            sections.append("")

    if content.pages:
        sections.append(
            f"## Site Sections\nUsers can navigate to: {', '.join(content.pages)}"
        )

    if content.faqs:
        sections.append("\n## Frequently Asked Questions")
        for faq in content.faqs:
            sections.append(f"**Q: {faq.question}**")
            sections.append(f"A: {faq.answer}\n")

    if content.contact:
        sections.append("\n## Contact Information")
        for label, value in (
            ("Email", content.contact.email),
            ("Phone", content.contact.phone),
            ("Address", content.contact.address),
            ("Hours", content.contact.hours),
        ):
            if value:
                sections.append(f"- {label}: {value}")

    if content.additional_context:
        sections.append(f"\n## Additional Information\n{content.additional_context}")

    sections.append(_INSTRUCTIONS)
    return "\n".join(sections)


class TextPrompt(BaseModel):
    kind: Literal["text"] = "text"
    text: str


class SiteContentPrompt(BaseModel):
    kind: Literal["site_content"] = "site_content"
    content: SiteContent


class InstructionPartsPrompt(BaseModel):
    kind: Literal["parts"] = "parts"
    parts: list[str]


PromptSource = Annotated[
    Union[TextPrompt, SiteContentPrompt, InstructionPartsPrompt],
    Field(discriminator="kind"),
]


def resolve_system_prompt(source: Any) -> str:
    """Resolve any accepted prompt shape into the system prompt string.

    Accepts the tagged variants plus a bare ``str`` or ``SiteContent``.

    Raises:
        TypeError: For any other value.
    """
    if isinstance(source, str):
        return source
    if isinstance(source, SiteContent):
        return generate_system_prompt(source)
    if isinstance(source, TextPrompt):
        return source.text
    if isinstance(source, SiteContentPrompt):
        return generate_system_prompt(source.content)
    if isinstance(source, InstructionPartsPrompt):
        return "\n\n".join(part for part in source.parts if part)
    raise TypeError(f"Unsupported prompt source: {type(source).__name__}")
