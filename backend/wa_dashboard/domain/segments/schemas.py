from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SegmentCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class SegmentUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class SegmentResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    created_at: datetime
    contact_count: int = 0


class SegmentMembersRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    contact_ids: List[int] = Field(default_factory=list)
    phone_numbers: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def require_members(self) -> "SegmentMembersRequest":
        if not self.contact_ids and not self.phone_numbers:
            raise ValueError("contact_ids or phone_numbers is required")
        return self


class SegmentMembersResponse(BaseModel):
    segment_id: int
    added: int
    not_found: List[str] = Field(default_factory=list)
