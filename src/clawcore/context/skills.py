"""Skill discovery: ``<dir>/<name>/SKILL.md`` files with YAML front matter."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from xml.sax.saxutils import escape

import structlog
import yaml

from clawcore.context.memory import read_optional

logger = structlog.get_logger("clawcore.context.skills")

_FRONT_MATTER_RE = re.compile(r"\A---\r?\n(.*?)\r?\n---\r?\n?", re.DOTALL)


@dataclass(frozen=True)
class SkillInfo:
    """A discovered skill. ``source`` is ``workspace``, ``global`` or ``builtin``."""

    name: str
    path: Path
    source: str
    description: str = ""


def split_front_matter(content: str) -> tuple[dict[str, Any], str]:
    """
    Split a SKILL.md document into its YAML front matter and body.

    Malformed or non-mapping front matter is treated as absent metadata; the
    body is still returned without it.
    """
    match = _FRONT_MATTER_RE.match(content)
    if match is None:
        return {}, content
    body = content[match.end() :]
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        logger.warning("skill_front_matter_invalid", error=str(exc))
        return {}, body
    if not isinstance(data, dict):
        return {}, body
    return data, body


class SkillsLoader:
    """
    Finds skills in up to three directories, in priority order:
    ``<workspace>/skills``, a global skills directory, and a builtin one.

    When two directories hold a skill with the same name, the higher-priority
    one wins and the other is ignored. A SKILL.md that cannot be read or
    decoded is skipped, so a lower-priority copy can take its place.
    """

    def __init__(
        self,
        workspace: str | Path,
        global_dir: str | Path | None = None,
        builtin_dir: str | Path | None = None,
    ) -> None:
        self._sources: list[tuple[str, Path]] = [
            ("workspace", Path(workspace).expanduser() / "skills")
        ]
        if global_dir is not None:
            self._sources.append(("global", Path(global_dir).expanduser()))
        if builtin_dir is not None:
            self._sources.append(("builtin", Path(builtin_dir).expanduser()))

    def list_skills(self) -> list[SkillInfo]:
        skills: list[SkillInfo] = []
        seen: set[str] = set()
        for source, directory in self._sources:
            if not directory.is_dir():
                continue
            for skill_dir in sorted(p for p in directory.iterdir() if p.is_dir()):
                skill_file = skill_dir / "SKILL.md"
                if skill_dir.name in seen or not skill_file.is_file():
                    continue
                content = read_optional(skill_file)
                if content is None:
                    continue
                seen.add(skill_dir.name)
                meta, _ = split_front_matter(content)
                skills.append(
                    SkillInfo(
                        name=skill_dir.name,
                        path=skill_file,
                        source=source,
                        description=str(meta.get("description", "") or ""),
                    )
                )
        return skills

    def load_skill(self, name: str) -> str | None:
        """Return a skill's body without front matter, or None if not found."""
        for _, directory in self._sources:
            content = read_optional(directory / name / "SKILL.md")
            if content is not None:
                _, body = split_front_matter(content)
                return body
        return None

    def load_skills_for_context(self, names: list[str]) -> str:
        """Render full skill bodies under ``### Skill: <name>`` headings."""
        sections = []
        for name in names:
            body = self.load_skill(name)
            if body is not None:
                sections.append(f"### Skill: {name}\n\n{body}")
        return "\n\n---\n\n".join(sections)

    def build_skills_summary(self) -> str:
        """
        Render an XML index of available skills (names and descriptions only).

        Returns ``""`` when no skills are installed.
        """
        skills = self.list_skills()
        if not skills:
            return ""
        lines = ["<skills>"]
        for skill in skills:
            lines.extend(
                [
                    "  <skill>",
                    f"    <name>{escape(skill.name)}</name>",
                    f"    <description>{escape(skill.description)}</description>",
                    f"    <location>{escape(str(skill.path))}</location>",
                    f"    <source>{skill.source}</source>",
                    "  </skill>",
                ]
            )
        lines.append("</skills>")
        return "\n".join(lines)
