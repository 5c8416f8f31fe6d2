"""Inbound and outbound message envelopes."""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, Field, model_validator


class InboundMessage(BaseModel):
    """
    A message arriving from a channel, the CLI, or the scheduler.

    ``session_key`` defaults to ``"<channel>:<chat_id>"``. Messages on the
    ``system`` channel carry their origin in ``chat_id`` as
    ``"<origin_channel>:<origin_chat_id>"``.
    """

    channel: str
    sender_id: str
    chat_id: str
    content: str
    session_key: str = ""
    media: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))

    @model_validator(mode="after")
    def default_session_key(self) -> InboundMessage:
        if not self.session_key:
            self.session_key = f"{self.channel}:{self.chat_id}"
        return self


class OutboundMessage(BaseModel):
    """A reply addressed to one chat on one channel."""

    channel: str
    chat_id: str
    content: str
