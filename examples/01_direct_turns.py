"""
Example 01: Direct Turns
========================

Demonstrates the simplest end-to-end usage of AgentLoop:
- Creating a loop with create() and using it as an async context manager
- Running CLI turns with process_direct()
- Watching background compaction through the event bus
- Inspecting the stored history and summary

Run without an API key:
    CLAWCORE_MOCK_LLM=1 uv run python examples/01_direct_turns.py

Run with a real LLM (set your API key first):
    OPENAI_API_KEY=sk-... uv run python examples/01_direct_turns.py
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


async def main() -> None:
    from clawcore import (
        AgentConfig,
        AgentLoop,
        ClawEvent,
        CompactionConfig,
        LiteLLMProvider,
        StoreConfig,
    )

    print("=== clawcore Direct Turns Example ===\n")

    # Small thresholds so compaction kicks in during the demo
    config = AgentConfig(
        workspace="/tmp/clawcore_example_01",
        compaction=CompactionConfig(message_threshold=6, recent_keep=2),
        store=StoreConfig(db_path="/tmp/clawcore_example_01.db"),
    )

    async with await AgentLoop.create(config, provider=LiteLLMProvider()) as agent:

        def on_compacted(event, payload):
            if payload["success"]:
                print(
                    f"  *** Compacted {payload['original_messages']} messages, "
                    f"kept {payload['retained_messages']} ***"
                )

        agent.subscribe(ClawEvent.COMPACTION_COMPLETED, on_compacted)

        questions = [
            "What is Python's GIL?",
            "How does asyncio work at a high level?",
            "What's the difference between async/await and threading?",
            "When should I use asyncio vs multiprocessing?",
            "Can you show a simple asyncio example?",
        ]

        for i, question in enumerate(questions, 1):
            print(f"Turn {i}: {question}")
            reply = await agent.process_direct(question, session_key="cli:example")
            print(f"  Reply: {reply[:120]}\n")

        await agent.wait_for_compactions()

        history = agent.store.get_history("cli:example")
        print(f"Messages in history: {len(history)}")
        summary = agent.store.get_summary("cli:example")
        if summary:
            print(f"Summary: {summary[:200]}")

    print("\nAgent closed cleanly.")


if __name__ == "__main__":
    asyncio.run(main())
