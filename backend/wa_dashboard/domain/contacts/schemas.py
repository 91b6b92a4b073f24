from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from wa_dashboard.domain.contacts.statuses import ContactStatus, LeadTemperature


class ContactResponse(BaseModel):
    id: int
    phone_number: str
    profile_name: Optional[str] = None
    last_message_at: Optional[datetime] = None
    unread_count: int
    status: ContactStatus
    lead_temperature: LeadTemperature
    button_click_count: int
    assigned_agent_id: Optional[int] = None
    workflow_id: Optional[int] = None
    workflow_step: int = 0
    workflow_paused: bool = False
    last_workflow_sent_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ContactCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    phone_number: str = Field(..., min_length=1)
    profile_name: Optional[str] = None

    @field_validator("phone_number")
    @classmethod
    def strip_phone(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("phone_number must not be blank")
        return value


class ContactImportItem(BaseModel):
    phone_number: str = Field(..., min_length=1)
    profile_name: Optional[str] = None


class ContactImportRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    contacts: List[ContactImportItem] = Field(..., min_length=1)
    segment_id: Optional[int] = None


class ContactImportResponse(BaseModel):
    imported: int
    skipped: int
    added_to_segment: int
    total: int


class StatusUpdateRequest(BaseModel):
    status: ContactStatus


class TemperatureUpdateRequest(BaseModel):
    temperature: LeadTemperature


class NameUpdateRequest(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value


class AgentAssignRequest(BaseModel):
    agent_id: Optional[int] = None


class StatsResponse(BaseModel):
    total_contacts: int
    total_messages: int
    unread_messages: int


class DashboardStatsResponse(StatsResponse):
    status_breakdown: dict[str, int]
    temperature_breakdown: dict[str, int]
    enrolled_in_workflows: int
    total_segments: int
