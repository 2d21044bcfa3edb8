"""Request and response models for the chat API."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from ..ai.orchestration.types import ConversationMessage


class HistoryMessage(BaseModel):
    """Prior conversation entry supplied by the client."""

    role: Literal["user", "assistant", "tool-result", "tool"] = Field(..., description="Message author")
    content: str = Field(..., description="Message text")

    def to_message(self) -> ConversationMessage:
        return ConversationMessage.from_mapping(self.model_dump())


class ChatMessageRequest(BaseModel):
    """Request payload for ``POST /chat/message``."""

    message: str = Field(..., min_length=1, description="The user's new message")
    conversation_id: Optional[str] = Field(None, description="Conversation to continue (None = start a new one)")
    history: List[HistoryMessage] = Field(default_factory=list, description="Earlier messages, oldest first")
    request_title: Optional[bool] = Field(
        None, description="Ask the model for a chat title (defaults to true for a new conversation)"
    )

    def to_history(self) -> list[ConversationMessage]:
        messages = [item.to_message() for item in self.history]
        messages.append(ConversationMessage.user(self.message))
        return messages

    def wants_title(self) -> bool:
        if self.request_title is not None:
            return self.request_title
        return not self.history


class CancelResponse(BaseModel):
    """Result of ``POST /chat/{conversation_id}/cancel``."""

    status: Literal["cancelled", "no_active_session"]
    conversation_id: str
