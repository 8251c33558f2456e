from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str = ""


class ChatRequest(BaseModel):
    """Full client-side transcript plus the document as the client currently has it."""
    model_config = ConfigDict(populate_by_name=True)

    messages: List[ChatMessage] = Field(default_factory=list)
    current_content: str = Field(default="", alias="currentContent")

    @property
    def user_request(self) -> str:
        # only the newest message is sent; earlier turns live in the agent or the transcript
        return self.messages[-1].content if self.messages else ""


class ParseRequest(BaseModel):
    content: str = ""


class SlideOut(BaseModel):
    index: int
    visible: str
    notes: str


class ParseResponse(BaseModel):
    title: str
    slides: List[SlideOut]
