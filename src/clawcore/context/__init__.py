"""Context assembly: system prompt, memory and skills."""

from clawcore.context.builder import BOOTSTRAP_FILES, ContextBuilder
from clawcore.context.memory import MemoryStore
from clawcore.context.skills import SkillInfo, SkillsLoader

__all__ = [
    "BOOTSTRAP_FILES",
    "ContextBuilder",
    "MemoryStore",
    "SkillInfo",
    "SkillsLoader",
]
