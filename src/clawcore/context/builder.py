"""System prompt and per-turn message list assembly."""

from __future__ import annotations

import platform
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog
from jinja2 import Template

from clawcore.context.memory import SECTION_SEPARATOR, MemoryStore, read_optional
from clawcore.context.skills import SkillsLoader
from clawcore.models.message import Message
from clawcore.tools.registry import ToolRegistry

BOOTSTRAP_FILES: tuple[str, ...] = ("AGENTS.md", "SOUL.md", "USER.md", "IDENTITY.md")

IDENTITY_TEMPLATE = Template(
    """\
# {{ name }}

You are {{ name }}, a helpful AI assistant.

## Current Time
{{ now }}

## Runtime
{{ runtime }}

## Workspace
Your workspace is at: {{ workspace }}
- Memory: {{ workspace }}/memory/MEMORY.md
- Daily notes: {{ workspace }}/memory/YYYYMM/YYYYMMDD.md
- Skills: {{ workspace }}/skills/{skill-name}/SKILL.md

## Important Rules

1. **Always use tools** - when you need to perform an action (schedule a reminder, \
send a message, run a command), you must call the appropriate tool. Do not just say \
you will do it or pretend to do it.

2. **Be helpful and accurate** - when using tools, briefly explain what you are doing.

3. **Memory** - when remembering something, write it to {{ workspace }}/memory/MEMORY.md"""
)

TOOLS_TEMPLATE = Template(
    """\
## Available Tools

**Important**: you must use tools to perform actions. Do not pretend to run commands \
or schedule tasks.

You have access to the following tools:

{% for line in summaries %}{{ line }}
{% endfor %}"""
)

SKILLS_HEADER = (
    "# Skills\n\n"
    "The following skills extend your capabilities. "
    "To use a skill, read its SKILL.md file using the read_file tool.\n\n"
)


class ContextBuilder:
    """
    Assembles the message list sent to the LLM on each turn.

    The system prompt is rebuilt from disk and from the live tool registry on
    every call, so memory edits, new skills and newly registered tools are
    visible on the very next turn. Sections are joined with a ``---`` rule
    and appear in a fixed order: identity, bootstrap documents, tools,
    skills, memory. Empty sections are omitted.
    """

    def __init__(
        self,
        workspace: str | Path,
        tools: ToolRegistry | None = None,
        *,
        agent_name: str = "clawcore",
        memory: MemoryStore | None = None,
        skills: SkillsLoader | None = None,
        memory_days: int = 3,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._workspace = Path(workspace).expanduser()
        self._tools = tools if tools is not None else ToolRegistry()
        self._agent_name = agent_name
        self._memory = memory or MemoryStore(self._workspace, clock=clock)
        self._skills = skills or SkillsLoader(self._workspace)
        self._memory_days = memory_days
        self._clock = clock
        self._logger = structlog.get_logger("clawcore.context")

    def set_tools(self, tools: ToolRegistry) -> None:
        """Point the tool summary at ``tools``."""
        self._tools = tools

    @property
    def memory(self) -> MemoryStore:
        return self._memory

    @property
    def skills(self) -> SkillsLoader:
        return self._skills

    # ── System prompt ───────────────────────────────────────────────────────────

    def build_system_prompt(self) -> str:
        """Render every system prompt section and join the non-empty ones."""
        parts = [self._identity()]

        bootstrap = self._bootstrap()
        if bootstrap:
            parts.append(bootstrap)

        summaries = self._tools.summaries()
        if summaries:
            parts.append(TOOLS_TEMPLATE.render(summaries=summaries))

        skills_summary = self._skills.build_skills_summary()
        if skills_summary:
            parts.append(SKILLS_HEADER + skills_summary)

        memory_context = self._memory.memory_context(self._memory_days)
        if memory_context:
            parts.append("# Memory\n\n" + memory_context)

        return SECTION_SEPARATOR.join(parts)

    def _identity(self) -> str:
        return IDENTITY_TEMPLATE.render(
            name=self._agent_name,
            now=self._clock().strftime("%Y-%m-%d %H:%M (%A)"),
            runtime=(
                f"{platform.system()} {platform.machine()}, "
                f"Python {platform.python_version()}"
            ),
            workspace=str(self._workspace),
        )

    def _bootstrap(self) -> str:
        sections = []
        for filename in BOOTSTRAP_FILES:
            content = read_optional(self._workspace / filename)
            if content is not None:
                sections.append(f"## {filename}\n\n{content}")
        return "\n\n".join(sections)

    # ── Messages ────────────────────────────────────────────────────────────────

    def build_messages(
        self,
        history: list[Message],
        summary: str,
        current_text: str,
        channel: str | None = None,
        chat_id: str | None = None,
    ) -> list[Message]:
        """
        Build ``[system] + history + [user]`` for one turn.

        Args:
            history: The session history, included unchanged and in order.
            summary: Prior compaction summary; appended to the system prompt
                when non-empty.
            current_text: The new user message.
            channel: Origin channel, shown in the session footer.
            chat_id: Origin chat, shown in the session footer.

        Returns:
            A new list; ``history`` itself is not modified.
        """
        system_prompt = self.build_system_prompt()
        if channel and channel.strip() and chat_id and chat_id.strip():
            system_prompt += f"\n\n## Current Session\nChannel: {channel}\nChat ID: {chat_id}"
        if summary:
            system_prompt += "\n\n## Summary of Previous Conversation\n\n" + summary

        self._logger.debug(
            "system_prompt_built",
            total_chars=len(system_prompt),
            history_messages=len(history),
        )
        return [Message.system(system_prompt), *history, Message.user(current_text)]

    def skills_info(self) -> dict[str, Any]:
        """Return ``{"total", "available", "names"}`` for startup reporting."""
        skills = self._skills.list_skills()
        names = [s.name for s in skills]
        return {"total": len(names), "available": len(names), "names": names}
