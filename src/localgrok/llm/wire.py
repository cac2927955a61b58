"""Pydantic models for the Ollama native chat API."""

from __future__ import annotations

from pydantic import BaseModel, Field, ValidationError

from localgrok.types import ConversationTurn, StreamFragment


class OllamaMessage(BaseModel):
    role: str
    content: str


class OllamaChatRequest(BaseModel):
    model: str
    messages: list[OllamaMessage]
    stream: bool = True
    think: bool = False

    @classmethod
    def from_turn(cls, turn: ConversationTurn) -> OllamaChatRequest:
        return cls(
            model=turn.model,
            messages=[OllamaMessage(role=m.role, content=m.content) for m in turn.messages],
            think=turn.think,
        )


class OllamaChunkMessage(BaseModel):
    role: str = "assistant"
    content: str | None = None
    thinking: str | None = None


class OllamaChatChunk(BaseModel):
    """One NDJSON line of a streamed ``/api/chat`` response."""

    model: str = ""
    message: OllamaChunkMessage | None = None
    done: bool = False
    done_reason: str | None = None
    error: str | None = None

    def to_fragment(self) -> StreamFragment:
        msg = self.message
        return StreamFragment(
            reasoning=(msg.thinking or "") if msg else "",
            content=(msg.content or "") if msg else "",
            done=self.done,
        )


class OllamaModelInfo(BaseModel):
    name: str


class OllamaTagsResponse(BaseModel):
    models: list[OllamaModelInfo] = Field(default_factory=list)


def decode_chunk(line: str) -> OllamaChatChunk | None:
    """Decode a single stream line.  Returns ``None`` for malformed lines."""
    try:
        return OllamaChatChunk.model_validate_json(line)
    except ValidationError:
        return None
