"""Prompt templates for history compaction."""

from __future__ import annotations

from jinja2 import Template

from clawcore.models.message import Message

SUMMARY_PROMPT = Template(
    "Provide a concise summary of this conversation segment, "
    "preserving core context and key points.\n"
    "{% if existing_summary %}Existing context: {{ existing_summary }}\n{% endif %}"
    "\nCONVERSATION:\n"
    "{% for m in messages %}{{ m.role }}: {{ m.content }}\n{% endfor %}"
)

MERGE_PROMPT = Template(
    "Merge these two conversation summaries into one cohesive summary:"
    "\n\n1: {{ first }}\n\n2: {{ second }}"
)

OMITTED_NOTE = "\n[Note: Some oversized messages were omitted from this summary for efficiency.]"


def render_summary_prompt(messages: list[Message], existing_summary: str | None) -> str:
    """Render the batch summarisation prompt for ``messages``."""
    return SUMMARY_PROMPT.render(messages=messages, existing_summary=existing_summary)


def render_merge_prompt(first: str, second: str) -> str:
    return MERGE_PROMPT.render(first=first, second=second)
