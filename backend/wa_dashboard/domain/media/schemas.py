from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class MediaUploadResponse(BaseModel):
    success: bool
    media_id: Optional[str] = None
    filename: str
    url: str
    mime_type: str
    size: int


class MediaSendRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    to: str = Field(..., min_length=1)
    media_type: Literal["image", "document", "audio", "video"]
    media_id: str = Field(..., min_length=1)
    caption: Optional[str] = None
    filename: Optional[str] = None
    media_url: Optional[str] = None
    mime_type: Optional[str] = None


class MediaSendResponse(BaseModel):
    success: bool
    message_id: Optional[str] = None
