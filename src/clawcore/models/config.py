"""Configuration models for the agent runtime and its components."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator


class CompactionConfig(BaseModel):
    """Thresholds and sampling parameters for background history compaction."""

    auto: bool = True
    """Whether the orchestrator notifies the compactor after every completed turn."""

    message_threshold: int = Field(
        default=20,
        ge=1,
        description="Compaction triggers when a session holds more than this many messages.",
    )

    token_percentage: float = Field(
        default=0.75,
        gt=0.0,
        le=1.0,
        description=(
            "Fraction of the context window. Compaction triggers when the estimated "
            "history size exceeds context_window * token_percentage."
        ),
    )

    recent_keep: int = Field(
        default=4,
        ge=0,
        description="Number of most recent messages kept verbatim after compaction.",
    )

    batch_threshold: int = Field(
        default=10,
        ge=2,
        description=(
            "When more than this many messages survive filtering, they are summarised "
            "in two halves and the partial summaries merged."
        ),
    )

    summary_max_tokens: int = Field(
        default=1024,
        ge=64,
        description="max_tokens passed to every summarisation and merge call.",
    )

    summary_temperature: float = Field(
        default=0.3,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for summarisation and merge calls.",
    )

    compaction_model: str | None = Field(
        default=None,
        description="Model used for summarisation. None = use the agent model.",
    )

    @model_validator(mode="after")
    def validate_recent_keep(self) -> CompactionConfig:
        if self.recent_keep >= self.message_threshold:
            raise ValueError("recent_keep must be strictly less than message_threshold")
        return self


class StoreConfig(BaseModel):
    """Configuration for the SQLite persistence layer."""

    db_path: str = Field(
        default="~/.clawcore/sessions.db",
        description="Path to the SQLite database file. ~ is expanded at runtime.",
    )

    wal_mode: bool = True
    """Use WAL journal mode for better concurrent read performance."""

    connection_timeout: float = 30.0
    """Seconds to wait for the database connection before raising."""


class ProviderConfig(BaseModel):
    """Credentials and transport settings for the litellm-backed provider."""

    api_key: str | None = None
    api_base: str | None = Field(
        default=None,
        description="Override the provider endpoint (OpenAI-compatible gateways, local servers).",
    )
    timeout: float = Field(default=120.0, gt=0.0)


class AgentConfig(BaseModel):
    """
    Top-level configuration for an agent runtime.

    Every tunable the engine consumes lives here and is passed explicitly to
    the component that needs it. Sub-configs have defaults and can be
    overridden individually.

    Example::

        config = AgentConfig(
            model="anthropic/claude-3-5-haiku-latest",
            context_window=32_000,
            compaction=CompactionConfig(message_threshold=30),
        )
    """

    model: str = "gpt-4o-mini"
    """Model string in litellm format."""

    agent_name: str = "clawcore"

    workspace: str = Field(
        default="~/.clawcore/workspace",
        description="Workspace root holding bootstrap docs, memory/ and skills/.",
    )

    context_window: int = Field(
        default=65_536,
        ge=1_024,
        description="Token budget of a single LLM call; drives compaction thresholds.",
    )

    max_iterations: int = Field(
        default=20,
        ge=1,
        le=200,
        description="Maximum LLM round-trips per turn in the tool-calling loop.",
    )

    max_tokens: int = Field(default=8192, ge=1)
    """max_tokens passed to every turn-level chat call."""

    temperature: float = Field(default=0.7, ge=0.0, le=2.0)

    memory_days: int = Field(
        default=3,
        ge=0,
        description="How many days of daily notes are included in the memory context.",
    )

    global_skills_dir: str | None = None
    builtin_skills_dir: str | None = None

    token_encoding: Literal["heuristic", "cl100k_base", "o200k_base"] = "heuristic"
    """Token estimation mode. ``heuristic`` is ``len(text) // 4``."""

    compaction: CompactionConfig = Field(default_factory=CompactionConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)

    @classmethod
    def default(cls) -> AgentConfig:
        """Return a config instance with all defaults."""
        return cls()

    @property
    def compaction_model(self) -> str:
        return self.compaction.compaction_model or self.model
