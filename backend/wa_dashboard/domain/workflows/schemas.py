from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from wa_dashboard.domain.workflows.statuses import DEFAULT_TEMPLATE_LANGUAGE, WorkflowLogStatus


class WorkflowStepInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    delay_hours: int = Field(0, ge=0)
    template_name: str = Field(..., min_length=1)
    template_language: str = Field(DEFAULT_TEMPLATE_LANGUAGE, min_length=1)
    template_components: List[dict[str, Any]] = Field(default_factory=list)


class WorkflowCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    trigger_after_days: int = Field(..., ge=0)
    is_active: bool = True
    steps: List[WorkflowStepInput] = Field(default_factory=list)


class WorkflowUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    trigger_after_days: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    steps: Optional[List[WorkflowStepInput]] = None


class WorkflowStepResponse(BaseModel):
    id: int
    step_number: int
    delay_hours: int
    template_name: str
    template_language: str
    template_components: Optional[List[dict[str, Any]]] = None

    class Config:
        from_attributes = True


class WorkflowResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    trigger_after_days: int
    is_active: bool
    created_at: datetime
    updated_at: datetime
    steps: List[WorkflowStepResponse] = Field(default_factory=list)
    enrolled_count: int = 0

    class Config:
        from_attributes = True


class WorkflowStepStats(BaseModel):
    step_number: int
    template_name: str
    total_sent: int
    successful: int
    failed: int


class WorkflowStatsResponse(BaseModel):
    workflow_id: int
    enrolled: int
    completed: int
    steps: List[WorkflowStepStats]


class WorkflowLogResponse(BaseModel):
    id: int
    contact_id: int
    phone_number: Optional[str] = None
    profile_name: Optional[str] = None
    workflow_id: int
    step_number: int
    status: WorkflowLogStatus
    error_message: Optional[str] = None
    sent_at: datetime


class EnrollmentResponse(BaseModel):
    contact_id: int
    workflow_id: Optional[int] = None
    workflow_step: int = 0
    workflow_paused: bool = False
    last_workflow_sent_at: Optional[datetime] = None
    changed: bool


class EnrollRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    workflow_id: int
