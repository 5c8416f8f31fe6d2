"""clawcore data models."""

from clawcore.models.config import (
    AgentConfig,
    CompactionConfig,
    ProviderConfig,
    StoreConfig,
)
from clawcore.models.message import (
    CompactionResult,
    LLMResponse,
    Message,
    Role,
    Session,
    TokenUsage,
    ToolCall,
)

__all__ = [
    "AgentConfig",
    "CompactionConfig",
    "ProviderConfig",
    "StoreConfig",
    "CompactionResult",
    "LLMResponse",
    "Message",
    "Role",
    "Session",
    "TokenUsage",
    "ToolCall",
]
