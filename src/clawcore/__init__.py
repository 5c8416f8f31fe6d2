"""
clawcore: agent execution engine for multi-channel LLM assistants.

Primary entry point::

    from clawcore import AgentLoop, AgentConfig, LiteLLMProvider

    async with await AgentLoop.create(AgentConfig(), provider=LiteLLMProvider()) as agent:
        print(await agent.process_direct("Hello!"))
"""

from clawcore.bus import InboundMessage, MessageBus, OutboundMessage
from clawcore.compaction import HistoryCompactor
from clawcore.context import ContextBuilder, MemoryStore, SkillInfo, SkillsLoader
from clawcore.events.bus import ClawEvent, EventBus
from clawcore.executor import ToolCallingIterator
from clawcore.ids import make_id
from clawcore.loop import (
    EMPTY_RESPONSE,
    EMPTY_SYSTEM_RESPONSE,
    NO_PROVIDER_RESPONSE,
    AgentLoop,
)
from clawcore.models import (
    AgentConfig,
    CompactionConfig,
    CompactionResult,
    LLMResponse,
    Message,
    ProviderConfig,
    Session,
    StoreConfig,
    TokenUsage,
    ToolCall,
)
from clawcore.providers import LiteLLMProvider, LLMProvider, ProviderError
from clawcore.store import ClawStoreError, SessionStore, StoreNotInitializedError
from clawcore.tokens import TokenEstimator
from clawcore.tools import Tool, ToolArgumentError, ToolError, ToolNotFoundError, ToolRegistry

__version__ = "0.1.0"

__all__ = [
    # Core
    "AgentLoop",
    "ToolCallingIterator",
    "HistoryCompactor",
    "ContextBuilder",
    "SessionStore",
    "make_id",
    "NO_PROVIDER_RESPONSE",
    "EMPTY_RESPONSE",
    "EMPTY_SYSTEM_RESPONSE",
    # Config
    "AgentConfig",
    "CompactionConfig",
    "ProviderConfig",
    "StoreConfig",
    # Models
    "CompactionResult",
    "LLMResponse",
    "Message",
    "Session",
    "TokenUsage",
    "ToolCall",
    # Bus
    "InboundMessage",
    "OutboundMessage",
    "MessageBus",
    # Context
    "MemoryStore",
    "SkillInfo",
    "SkillsLoader",
    # Events
    "ClawEvent",
    "EventBus",
    # Providers
    "LLMProvider",
    "LiteLLMProvider",
    "ProviderError",
    # Tools
    "Tool",
    "ToolRegistry",
    "ToolError",
    "ToolNotFoundError",
    "ToolArgumentError",
    # Misc
    "TokenEstimator",
    "ClawStoreError",
    "StoreNotInitializedError",
]
