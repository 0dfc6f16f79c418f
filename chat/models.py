"""Chat-related Pydantic models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

CONTENT_KIND = "content"
THOUGHT_KINDS = frozenset({"thinking", "thought", "toolCalling", "callResult"})


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_message_id() -> str:
    return uuid4().hex


class ChatRole(str, Enum):
    """Roles a transcript entry can have."""

    USER = "user"
    ASSISTANT = "assistant"


class ThoughtStatus(str, Enum):
    """Lifecycle of a thought chain entry."""

    PENDING = "pending"
    DONE = "done"


class ThoughtChainItem(BaseModel):
    """One auxiliary reasoning or tool-call entry of an assistant message."""

    key: str
    title: str | None = None
    content: str = ""
    status: ThoughtStatus = ThoughtStatus.PENDING


class ChatMessage(BaseModel):
    """A single transcript entry.

    Assistant messages are mutated in place while their response streams in
    and are left untouched once the turn completes.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_message_id)
    role: ChatRole
    content: str = ""
    files: list[str] = Field(default_factory=list)
    created: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow, alias="updatedAt")
    loading: bool = False
    thought_chain: list[ThoughtChainItem] = Field(default_factory=list, alias="thoughtChain")
    session_ref: str | None = Field(default=None, alias="sessionRef")

    def touch(self) -> None:
        """Refresh the update timestamp."""
        self.updated_at = utcnow()

    @property
    def is_assistant(self) -> bool:
        return self.role == ChatRole.ASSISTANT


class WirePayload(BaseModel):
    """Decoded ``data`` field of a response envelope."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    status: str | None = None
    content: str | None = None
    message_id: str | None = Field(default=None, alias="messageId")
    metadata_map: dict[str, Any] | None = Field(default=None, alias="metadataMap")


class WireEnvelope(BaseModel):
    """One response envelope as written by the server: ``{event?, data}``."""

    event: str | None = None
    data: str


class StreamEvent(BaseModel):
    """A decoded unit of the response stream."""

    kind: str = CONTENT_KIND
    payload: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def content(self) -> str:
        return self.payload.get("content") or ""

    @property
    def status(self) -> str | None:
        return self.payload.get("status")

    @property
    def message_id(self) -> str | None:
        return self.payload.get("messageId")

    @property
    def event_id(self) -> str | None:
        """Server-issued id of a side-channel event, falling back to the metadata id."""
        event_id = self.payload.get("id") or self.metadata.get("id")
        return str(event_id) if event_id else None

    @property
    def is_content(self) -> bool:
        return self.kind == CONTENT_KIND


class HandlerResult(BaseModel):
    """Outcome reported by a pluggable event handler."""

    handled: bool = False
    data: Any = None
