from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

MessageRole = Literal["user", "assistant", "system"]


class ChatRequest(BaseModel):
    """Request payload for the chatbot message API."""
    message: str = Field(min_length=1, max_length=1000)
    session_id: Optional[str] = Field(default=None)


class ChatMetadata(BaseModel):
    intent: str
    function_called: bool


class ChatResponse(BaseModel):
    """Envelope returned for every processed turn, success or failure."""
    success: bool
    message: str
    session_id: Optional[str] = None
    data: Optional[Any] = None
    metadata: Optional[ChatMetadata] = None
    error: Optional[str] = None


class StoredMessage(BaseModel):
    """Persisted message record; metadata holds the invoked function and its raw result."""
    role: MessageRole
    content: str
    timestamp: float
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SessionRecord(BaseModel):
    """One conversation: message log, structured context, and sliding expiry."""
    session_id: str
    user_id: str
    messages: List[StoredMessage] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    created_at: float
    last_active_at: float
    expires_at: float


class SessionSummary(BaseModel):
    """Lightweight session summary for the user's session list."""
    session_id: str
    title: str
    message_count: int
    created_at: float
    last_active_at: float
