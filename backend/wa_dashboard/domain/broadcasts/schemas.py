from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from wa_dashboard.domain.broadcasts.db_models import BroadcastStatus
from wa_dashboard.domain.workflows.statuses import DEFAULT_TEMPLATE_LANGUAGE


class BulkSendRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    template_name: Optional[str] = None
    language_code: str = DEFAULT_TEMPLATE_LANGUAGE
    components: List[dict[str, Any]] = Field(default_factory=list)
    segment_id: Optional[int] = None
    contact_ids: Optional[List[int]] = None


class BulkSendResponse(BaseModel):
    success: bool = True
    job_id: int
    total_contacts: int
    status: BroadcastStatus


class BroadcastJobResponse(BaseModel):
    id: int
    template_name: str
    language_code: str
    segment_id: Optional[int] = None
    segment_name: Optional[str] = None
    total_contacts: int
    total_sent: int
    total_failed: int
    status: BroadcastStatus
    last_error: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class TemplateSendRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    to: str = Field(..., min_length=1)
    template_name: str = Field(..., min_length=1)
    language_code: str = DEFAULT_TEMPLATE_LANGUAGE
    components: List[dict[str, Any]] = Field(default_factory=list)


class TemplateSendResponse(BaseModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
