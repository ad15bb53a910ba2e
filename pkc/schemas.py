"""
Pydantic schemas for request/response validation.
"""
from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, Field

Role = Literal["user", "assistant"]


class ChatBody(BaseModel):
    """Request body for one chat turn."""
    message: str = Field(..., description="The user's message")
    thread_id: Optional[int] = Field(None, description="Existing thread ID or None for a new thread")
    model: Optional[str] = Field(None, description="Model identifier: 'openai:gpt-4o-mini' or 'ollama:qwen2.5:7b'")


class MessageOut(BaseModel):
    id: int
    role: Role
    content: str
    created_at: datetime


class Source(BaseModel):
    """A file that contributed context to an answer."""
    filename: str
    score: float
    preview: str


class ChatResponse(BaseModel):
    ok: bool = True
    thread_id: int
    mode: Literal["grounded", "general"]
    messages: List[MessageOut]
    sources: List[Source] = []


class IngestResponse(BaseModel):
    ok: bool = True
    file_id: str
    filename: str
    chunks_created: int
    duplicate: bool = False
    partial: bool = False
    error: Optional[str] = None
    tags: Optional[List[str]] = None
