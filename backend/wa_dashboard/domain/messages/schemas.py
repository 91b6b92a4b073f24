from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from wa_dashboard.domain.messages.statuses import MessageDirection


class MessageResponse(BaseModel):
    id: int
    whatsapp_message_id: Optional[str] = None
    from_number: str
    profile_name: Optional[str] = None
    message_type: str
    message_text: Optional[str] = None
    media_id: Optional[str] = None
    media_url: Optional[str] = None
    media_mime_type: Optional[str] = None
    timestamp: datetime
    direction: MessageDirection
    status: Optional[str] = None
    is_read: bool

    class Config:
        from_attributes = True


class SendTextRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    to: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)


class SendResponse(BaseModel):
    success: bool
    message_id: Optional[str] = None


class BotMessageRequest(BaseModel):
    whatsapp_message_id: Optional[str] = None
    to_number: str = Field(..., min_length=1)
    message_text: Optional[str] = None
    message_type: str = "text"
    media_url: Optional[str] = None
    timestamp: Optional[datetime] = None


class BotMessageResponse(BaseModel):
    success: bool
    created: bool
    id: int
