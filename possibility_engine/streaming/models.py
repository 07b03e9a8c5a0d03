"""
Streaming Data Models

Models for the execution request, the framed `data: <json>` event protocol
and the per-possibility accumulating state.
"""

from copy import deepcopy
from typing import Any, Literal

import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator

from possibility_engine.core.config.constants import (
    SSE_DATA_PREFIX,
    SSE_DONE_SENTINEL,
    StreamEventType,
)
from possibility_engine.generation.models import Permutation, PossibilityMetadata


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str

    model_config = ConfigDict(frozen=True)


class ExecutionOptions(BaseModel):
    max_tokens: int = Field(..., alias="maxTokens", ge=1)
    stream: bool = True

    model_config = ConfigDict(populate_by_name=True)


class ExecutionRequest(BaseModel):
    """Body of `POST /possibility/{id}`: {messages, permutation, options:{maxTokens}}."""

    messages: list[ChatMessage] = Field(..., min_length=1)
    permutation: Permutation
    options: ExecutionOptions

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class StreamEvent(BaseModel):
    """
    One event payload: `{"type": ..., "data": {...}}`.
    """

    model_config = ConfigDict(frozen=True)

    type: StreamEventType
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def copy_data(cls, v):
        """Copy payloads so later mutation of the source dict cannot leak in."""
        if v is None:
            return {}
        if isinstance(v, dict):
            return deepcopy(v)
        return v

    @property
    def possibility_id(self) -> str | None:
        value = self.data.get("id")
        return str(value) if value is not None else None

    def format(self) -> str:
        """Format as a `data: <json>` frame followed by a blank line."""
        payload = orjson.dumps({"type": self.type.value, "data": self.data}).decode()
        return f"{SSE_DATA_PREFIX}{payload}\n\n"

    @staticmethod
    def done_frame() -> str:
        return f"{SSE_DATA_PREFIX}{SSE_DONE_SENTINEL}\n\n"


class ParsedFrame(BaseModel):
    """A fully terminated line decoded by the parser: an event or the [DONE] sentinel."""

    model_config = ConfigDict(frozen=True)

    event: StreamEvent | None = None
    is_done: bool = False


class PossibilityState(BaseModel):
    """
    Accumulating result of one possibility.

    Created pending (`content=""`, `is_complete=False`) before any execution
    starts. Only the executor streaming this id mutates it.
    """

    id: str
    content: str = ""
    is_complete: bool = False
    probability: float | None = None
    logprobs: Any = None
    error: str | None = None
    metadata: PossibilityMetadata

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "isComplete": self.is_complete,
            "probability": self.probability,
            "error": self.error,
            "provider": self.metadata.provider,
            "model": self.metadata.model,
            "temperature": self.metadata.temperature,
            "priority": self.metadata.priority.value,
        }
