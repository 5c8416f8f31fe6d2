"""History compaction."""

from clawcore.compaction.engine import HistoryCompactor
from clawcore.compaction.prompts import OMITTED_NOTE

__all__ = ["HistoryCompactor", "OMITTED_NOTE"]
