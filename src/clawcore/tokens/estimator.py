"""Approximate token counting for compaction thresholds."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from clawcore.models.message import Message


class TokenEstimator:
    """
    Approximate token counter.

    This is not a tokenizer. The default mode is the character heuristic
    ``len(text) // 4`` (minimum 1 for non-empty text), so every threshold that
    depends on it is approximate. When ``encoding`` names a tiktoken encoding
    (``cl100k_base`` or ``o200k_base``) the encoder is loaded lazily, cached
    per process, and used instead; any tiktoken failure falls back to the
    heuristic.
    """

    def __init__(self, encoding: str = "heuristic") -> None:
        self._encoding = encoding
        self._encoder_cache: dict[str, Any] = {}
        self._force_heuristic: bool = False
        """Set to True in tests to skip tiktoken import."""

    def estimate(self, text: str | None) -> int:
        """
        Estimate the token count for a string.

        Args:
            text: The text to estimate. ``None`` and ``""`` count as zero.

        Returns:
            Estimated token count, always >= 1 for non-empty text.
        """
        if not text:
            return 0
        if self._force_heuristic or self._encoding not in ("cl100k_base", "o200k_base"):
            return self._heuristic(text)
        try:
            return self._tiktoken_estimate(text, self._encoding)
        except Exception:
            return self._heuristic(text)

    def estimate_message(self, message: Message) -> int:
        """Estimate a message's content plus any tool-call names and arguments."""
        total = self.estimate(message.content)
        for call in message.tool_calls:
            total += self.estimate(call.name)
            total += self.estimate(str(call.arguments))
        return total

    def estimate_messages(self, messages: Iterable[Message]) -> int:
        return sum(self.estimate_message(m) for m in messages)

    def _heuristic(self, text: str) -> int:
        """Conservative heuristic: 4 characters per token, minimum 1."""
        return max(1, len(text) // 4)

    def _tiktoken_estimate(self, text: str, encoding_name: str) -> int:
        """Encode with tiktoken, caching the encoder object."""
        if encoding_name not in self._encoder_cache:
            import tiktoken

            self._encoder_cache[encoding_name] = tiktoken.get_encoding(encoding_name)
        encoder = self._encoder_cache[encoding_name]
        return len(encoder.encode(text))
