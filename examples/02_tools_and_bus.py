"""
Example 02: Tools and the Message Bus
=====================================

Demonstrates the bus-driven deployment shape:
- Registering a tool the LLM can call
- Running the consume loop as a background task
- Publishing inbound messages from a "channel" and reading outbound replies
- Routing a system message (e.g. a finished background job) back to its chat

Run without an API key:
    CLAWCORE_MOCK_LLM=1 uv run python examples/02_tools_and_bus.py
"""

import asyncio
import sys
from datetime import datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


async def main() -> None:
    from clawcore import (
        AgentConfig,
        AgentLoop,
        InboundMessage,
        LiteLLMProvider,
        MessageBus,
        StoreConfig,
        Tool,
    )

    class ClockTool(Tool):
        name = "current_time"
        description = "Return the current local time."
        parameters = {"type": "object", "properties": {}}

        def execute(self, args):
            return datetime.now().strftime("%H:%M:%S")

    config = AgentConfig(
        workspace="/tmp/clawcore_example_02",
        store=StoreConfig(db_path="/tmp/clawcore_example_02.db"),
    )
    bus = MessageBus()
    agent = await AgentLoop.create(config, bus=bus, provider=LiteLLMProvider())
    agent.register_tool(ClockTool())
    print(f"Startup: {agent.startup_info()}\n")

    runner = asyncio.create_task(agent.run())

    bus.publish_inbound(
        InboundMessage(channel="telegram", sender_id="alice", chat_id="42", content="What time is it?")
    )
    bus.publish_inbound(
        InboundMessage(
            channel="system",
            sender_id="backup-job",
            chat_id="telegram:42",
            content="Nightly backup finished without errors.",
        )
    )

    for _ in range(2):
        reply = await bus.subscribe_outbound(timeout=60)
        if reply is None:
            print("No reply within timeout")
            break
        print(f"[{reply.channel}:{reply.chat_id}] {reply.content[:120]}")

    agent.stop()
    await runner
    await agent.close()


if __name__ == "__main__":
    asyncio.run(main())
