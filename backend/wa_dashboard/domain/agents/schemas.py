from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class AgentCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    email: EmailStr
    role: str = Field("agent", min_length=1)
    avatar_url: Optional[str] = None


class AgentResponse(BaseModel):
    id: int
    name: str
    email: str
    role: str
    avatar_url: Optional[str] = None
    created_at: datetime
    active_chats: int = 0


class AgentStatsResponse(BaseModel):
    agent_id: int
    active_chats: int
    human_takeover_chats: int
    unread_messages: int
