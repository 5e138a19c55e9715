"""
Pydantic schemas for assignment rules and WhatsApp triggers.
"""
import json
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models.assignment_rule import AssignmentType


class AssignmentRuleUpsert(BaseModel):
    id: Optional[int] = None
    source: Optional[str] = Field(None, max_length=64)
    assignment_type: AssignmentType = AssignmentType.SPECIFIC
    assignee_id: int
    percentage: Optional[float] = Field(None, ge=0, le=100)
    priority: int = 0
    is_enabled: bool = True

    @field_validator("source", mode="before")
    @classmethod
    def blank_source_is_wildcard(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def percentage_required_for_percentage_rules(self):
        if self.assignment_type == AssignmentType.PERCENTAGE and self.percentage is None:
            raise ValueError("percentage is required for PERCENTAGE rules")
        return self


class AssignmentRuleToggle(BaseModel):
    is_enabled: bool


class AssignmentRuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    workspace_id: int
    source: Optional[str] = None
    assignment_type: AssignmentType
    assignee_id: int
    percentage: Optional[float] = None
    priority: int
    is_enabled: bool
    last_assigned_at: Optional[datetime] = None
    assignment_count: int


class WhatsAppTriggerUpsert(BaseModel):
    status: str = Field(..., min_length=1, max_length=64)
    is_enabled: bool = True
    campaign_name: Optional[str] = Field(None, max_length=256)
    source: Optional[str] = Field(None, max_length=128)
    template_params: list[str] = Field(default_factory=list)
    params_fallback: dict[str, str] = Field(default_factory=dict)

    def storage_fields(self) -> dict:
        return {
            "is_enabled": self.is_enabled,
            "campaign_name": self.campaign_name,
            "source": self.source,
            "template_params_json": json.dumps(self.template_params),
            "params_fallback_json": json.dumps(self.params_fallback),
        }


class WhatsAppTriggerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    workspace_id: int
    status: str
    is_enabled: bool
    campaign_name: Optional[str] = None
    source: Optional[str] = None
    template_params_json: Optional[str] = None
    params_fallback_json: Optional[str] = None
