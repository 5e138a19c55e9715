"""
Pydantic schemas for Lead API.
"""
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.activity import ActivityType
from app.models.lead import LeadSource, LeadStatus, LeadCategory, LeadPriority


# ──────────────────────────────────────────────
# Request Schemas
# ──────────────────────────────────────────────

class LeadCreate(BaseModel):
    """Manual lead entry. Source/status/priority are free-form and normalized by the ingestor."""
    first_name: str = Field(..., min_length=1, max_length=128)
    last_name: Optional[str] = Field(None, max_length=128)
    email: Optional[str] = Field(None, max_length=256)
    phone: str = Field(..., min_length=1, max_length=32)
    source: Optional[str] = Field(None, max_length=64)
    status: Optional[str] = Field(None, max_length=64)
    priority: Optional[str] = Field(None, max_length=16)
    owner_id: Optional[int] = None
    campaign: Optional[str] = Field(None, max_length=256)
    course_interested: Optional[str] = Field(None, max_length=256)
    city: Optional[str] = Field(None, max_length=128)
    state: Optional[str] = Field(None, max_length=128)
    custom_fields: Optional[dict[str, Any]] = None
    notes: Optional[str] = None


class LeadStatusUpdate(BaseModel):
    status: str

    @field_validator("status", mode="before")
    @classmethod
    def strip_status(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v


class LeadOwnerUpdate(BaseModel):
    owner_id: Optional[int] = None


class LeadImportRequest(BaseModel):
    """CSV rows already parsed and column-mapped by the client."""
    leads: list[dict[str, Any]] = Field(..., min_length=1, max_length=5000)
    assign_to_me: bool = False
    auto_assign: bool = False


# ──────────────────────────────────────────────
# Response Schemas
# ──────────────────────────────────────────────

class LeadResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    workspace_id: int
    first_name: str
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: str
    source: LeadSource
    status: LeadStatus
    category: LeadCategory
    priority: LeadPriority
    course_interested: Optional[str] = None
    campaign: Optional[str] = None
    custom_fields: Optional[str] = None
    owner_id: Optional[int] = None
    assigned_at: Optional[datetime] = None
    created_by_id: int
    converted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class IngestResponse(BaseModel):
    success: bool = True
    message: str
    action: str
    assignment_strategy: str
    note: Optional[str] = None
    lead: LeadResponse


class ImportRowError(BaseModel):
    row: int
    field: Optional[str] = None
    message: str


class LeadImportResponse(BaseModel):
    success: bool = True
    created: int
    updated: int
    errors: list[ImportRowError]


class ActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    lead_id: int
    user_id: Optional[int] = None
    type: ActivityType
    subject: str
    description: Optional[str] = None
    created_at: datetime
