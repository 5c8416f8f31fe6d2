"""Background history compaction: batch-and-merge summarisation with tail truncation.

Once a session grows past the message-count or token threshold, everything
except the most recent ``recent_keep`` messages is summarised by the LLM and
then discarded. The stored summary is carried into the system prompt of every
later turn.

Algorithm (``HistoryCompactor.compact``):

1. Candidates = history minus the last ``recent_keep`` messages. Abort when
   the session is not longer than ``recent_keep``.
2. Keep only ``user`` / ``assistant`` messages and drop any whose estimate
   exceeds half the context window.
3. More than ``batch_threshold`` survivors: summarise two halves (the first
   primed with the prior summary), then merge. One half failing leaves the
   other; a failed merge concatenates both.
   Otherwise: one summarisation call primed with the prior summary.
4. Append a fixed note if oversized messages were dropped.
5. Non-empty summary: replace the stored summary, truncate to the tail, save.

Any failed LLM call yields "no summary" for that batch; a run that produces
no summary leaves the session untouched so the next turn can retry.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import structlog

from clawcore.compaction.prompts import OMITTED_NOTE, render_merge_prompt, render_summary_prompt
from clawcore.events.bus import ClawEvent, EventBus
from clawcore.models.config import AgentConfig
from clawcore.models.message import CompactionResult, Message
from clawcore.providers.base import LLMProvider
from clawcore.store.sessions import SessionStore
from clawcore.tokens.estimator import TokenEstimator

SUMMARIZABLE_ROLES = frozenset({"user", "assistant"})


class HistoryCompactor:
    """
    Decides when a session needs compaction and runs it in the background.

    At most one compaction runs per session key: ``maybe_compact()`` claims
    the key in an in-flight set before spawning the task (a non-blocking
    try-lock) and the task releases it when it finishes, whatever the
    outcome. Compactions for different keys run concurrently and are not
    capped in number.

    Compactors produced by :meth:`with_provider` share the in-flight set and
    task table with the original, so the per-key guarantee survives a
    provider swap.

    Example::

        compactor = HistoryCompactor(store, provider, estimator, config)
        compactor.maybe_compact("telegram:42")   # non-blocking
        await compactor.wait_for_pending()      # e.g. at shutdown
    """

    def __init__(
        self,
        store: SessionStore,
        provider: LLMProvider,
        token_estimator: TokenEstimator,
        config: AgentConfig,
        event_bus: EventBus | None = None,
        model: str | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._estimator = token_estimator
        self._config = config
        self._event_bus = event_bus or EventBus()
        self._model = model or config.compaction_model
        self._in_flight: set[str] = set()
        self._tasks: dict[str, asyncio.Task[CompactionResult]] = {}
        self._logger = structlog.get_logger("clawcore.compaction")

    def with_provider(self, provider: LLMProvider, model: str | None = None) -> HistoryCompactor:
        """Return a compactor using ``provider`` that shares this one's in-flight state."""
        clone = HistoryCompactor(
            self._store,
            provider,
            self._estimator,
            self._config,
            event_bus=self._event_bus,
            model=model or self._config.compaction_model,
        )
        clone._in_flight = self._in_flight
        clone._tasks = self._tasks
        return clone

    # ── Trigger / scheduling ────────────────────────────────────────────────────

    def should_compact(self, session_key: str) -> bool:
        """True when the history exceeds the message-count or token threshold."""
        history = self._store.get_history(session_key)
        if len(history) > self._config.compaction.message_threshold:
            return True
        tokens = self._estimator.estimate_messages(history)
        return tokens > self._config.context_window * self._config.compaction.token_percentage

    def maybe_compact(self, session_key: str) -> bool:
        """
        Start a background compaction for ``session_key`` if one is needed.

        Non-blocking. A call made while a compaction for the same key is still
        running is a no-op.

        Args:
            session_key: The session to check.

        Returns:
            True if a compaction task was started.
        """
        if not self.should_compact(session_key):
            return False
        if session_key in self._in_flight:
            self._logger.debug("compaction_already_running", session_key=session_key)
            return False
        self._in_flight.add(session_key)

        history = self._store.get_history(session_key)
        tokens = self._estimator.estimate_messages(history)
        self._logger.info(
            "compaction_triggered",
            session_key=session_key,
            messages=len(history),
            tokens=tokens,
        )
        self._event_bus.publish(
            ClawEvent.COMPACTION_TRIGGERED,
            {"session_key": session_key, "messages": len(history), "tokens": tokens},
        )

        task = asyncio.create_task(self._run_background(session_key))
        self._tasks[session_key] = task
        return True

    def in_progress(self, session_key: str) -> bool:
        return session_key in self._in_flight

    @property
    def pending_keys(self) -> list[str]:
        return list(self._in_flight)

    async def wait_for_pending(self, session_key: str | None = None) -> None:
        """Await in-flight compactions: one key's, or all of them."""
        if session_key is not None:
            tasks = [self._tasks[session_key]] if session_key in self._tasks else []
        else:
            tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_background(self, session_key: str) -> CompactionResult:
        """Task body. Never raises; always releases the key."""
        try:
            return await self.compact(session_key)
        except Exception as exc:
            self._logger.error(
                "compaction_unexpected_error", session_key=session_key, error=str(exc)
            )
            self._event_bus.publish(
                ClawEvent.COMPACTION_FAILED,
                {"session_key": session_key, "error": str(exc)},
            )
            return CompactionResult(session_key=session_key, success=False, reason=str(exc))
        finally:
            self._in_flight.discard(session_key)
            self._tasks.pop(session_key, None)

    # ── Compaction ──────────────────────────────────────────────────────────────

    async def compact(self, session_key: str) -> CompactionResult:
        """
        Summarise and truncate one session now.

        Does not consult or update the in-flight set; use ``maybe_compact()``
        for the deduplicated background path.

        Args:
            session_key: The session to compact.

        Returns:
            CompactionResult; ``success`` is False when the session was left
            untouched.
        """
        start_ms = time.time() * 1000
        keep = self._config.compaction.recent_keep
        history = self._store.get_history(session_key)
        if len(history) <= keep:
            return self._finish(session_key, start_ms, len(history), reason="too_few_messages")

        candidates = history[:-keep] if keep else history
        max_message_tokens = self._config.context_window // 2
        survivors: list[Message] = []
        omitted = False
        for message in candidates:
            if message.role not in SUMMARIZABLE_ROLES:
                continue
            if self._estimator.estimate(message.content) > max_message_tokens:
                omitted = True
                continue
            survivors.append(message)

        if not survivors:
            return self._finish(
                session_key,
                start_ms,
                len(history),
                omitted=omitted,
                reason="nothing_to_summarize",
            )

        existing = self._store.get_summary(session_key) or None
        if len(survivors) > self._config.compaction.batch_threshold:
            batches = 2
            mid = len(survivors) // 2
            first = await self._summarize_batch(session_key, survivors[:mid], existing)
            second = await self._summarize_batch(session_key, survivors[mid:], None)
            if first and second:
                summary = await self._merge(session_key, first, second)
            else:
                summary = first or second
        else:
            batches = 1
            summary = await self._summarize_batch(session_key, survivors, existing)

        if omitted and summary:
            summary += OMITTED_NOTE

        if not summary or not summary.strip():
            return self._finish(
                session_key,
                start_ms,
                len(history),
                summarized=len(survivors),
                omitted=omitted,
                batches=batches,
                reason="summarization_failed",
            )

        self._store.set_summary(session_key, summary)
        self._store.truncate_history(session_key, keep)
        await self._store.save(self._store.get_or_create(session_key))

        self._logger.info(
            "session_summarized",
            session_key=session_key,
            original_messages=len(history),
            valid_messages=len(survivors),
        )
        return self._finish(
            session_key,
            start_ms,
            len(history),
            success=True,
            summarized=len(survivors),
            omitted=omitted,
            batches=batches,
            summary=summary,
        )

    async def _summarize_batch(
        self, session_key: str, batch: list[Message], existing_summary: str | None
    ) -> str | None:
        """One summarisation call. Returns None when the call fails."""
        prompt = render_summary_prompt(batch, existing_summary)
        try:
            response = await self._provider.chat(
                [Message.user(prompt)], [], self._model, self._options()
            )
        except Exception as exc:
            self._logger.error("summarize_batch_failed", session_key=session_key, error=str(exc))
            return None
        return response.content

    async def _merge(self, session_key: str, first: str, second: str) -> str:
        """Merge two partial summaries; concatenates them if the call fails or is empty."""
        try:
            response = await self._provider.chat(
                [Message.user(render_merge_prompt(first, second))],
                [],
                self._model,
                self._options(),
            )
        except Exception as exc:
            self._logger.warning("merge_summaries_failed", session_key=session_key, error=str(exc))
            return f"{first} {second}"
        if not response.content or not response.content.strip():
            return f"{first} {second}"
        return response.content

    def _options(self) -> dict[str, Any]:
        return {
            "max_tokens": self._config.compaction.summary_max_tokens,
            "temperature": self._config.compaction.summary_temperature,
        }

    def _finish(
        self,
        session_key: str,
        start_ms: float,
        original: int,
        *,
        success: bool = False,
        summarized: int = 0,
        omitted: bool = False,
        batches: int = 0,
        summary: str = "",
        reason: str | None = None,
    ) -> CompactionResult:
        result = CompactionResult(
            session_key=session_key,
            success=success,
            original_messages=original,
            summarized_messages=summarized,
            omitted_oversized=omitted,
            batches=batches,
            retained_messages=len(self._store.get_history(session_key)),
            summary_chars=len(summary),
            elapsed_ms=time.time() * 1000 - start_ms,
            reason=reason,
        )
        if not success:
            self._logger.info("compaction_skipped", session_key=session_key, reason=reason)
        self._event_bus.publish(ClawEvent.COMPACTION_COMPLETED, result.model_dump())
        return result
