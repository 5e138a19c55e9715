"""
Lead API endpoints: manual entry, CSV import, status and owner changes.
"""
from typing import Annotated

from fastapi import APIRouter, Depends, Response
from starlette import status

from app.core.deps import CurrentActor, get_lead_ingestor, get_lead_service
from app.schemas.lead import (
    ActivityResponse,
    IngestResponse,
    LeadCreate,
    LeadImportRequest,
    LeadImportResponse,
    LeadOwnerUpdate,
    LeadResponse,
    LeadStatusUpdate,
)
from app.services.lead_ingestor import IngestOrigin, LeadIngestor
from app.services.lead_service import LeadService

router = APIRouter()

Ingestor = Annotated[LeadIngestor, Depends(get_lead_ingestor)]
Service = Annotated[LeadService, Depends(get_lead_service)]


@router.post("", response_model=IngestResponse, status_code=status.HTTP_201_CREATED)
async def create_lead(data: LeadCreate, actor: CurrentActor, ingestor: Ingestor, response: Response):
    """Create a lead by hand. A duplicate phone updates the existing lead instead."""
    result = await ingestor.ingest(
        data.model_dump(exclude_none=True),
        actor.workspace_id,
        origin=IngestOrigin.MANUAL,
        actor_id=actor.user_id,
    )
    if result.action == "updated":
        response.status_code = status.HTTP_200_OK
    return IngestResponse(
        message="Lead created successfully" if result.action == "created" else "Lead updated successfully",
        action=result.action,
        assignment_strategy=result.strategy,
        note=result.note,
        lead=LeadResponse.model_validate(result.lead),
    )


@router.post("/import", response_model=LeadImportResponse)
async def import_leads(data: LeadImportRequest, actor: CurrentActor, ingestor: Ingestor):
    summary = await ingestor.import_leads(
        data.leads,
        actor.workspace_id,
        actor.user_id,
        assign_to_me=data.assign_to_me,
        auto_assign=data.auto_assign,
    )
    return LeadImportResponse(
        created=summary.created,
        updated=summary.updated,
        errors=summary.errors,
    )


@router.patch("/{lead_id}/status", response_model=LeadResponse)
async def update_status(lead_id: int, data: LeadStatusUpdate, actor: CurrentActor, svc: Service):
    """Change status. A configured WhatsApp trigger may fire; its outcome never fails this call."""
    return await svc.update_status(lead_id, data.status, actor.user_id, actor.workspace_id)


@router.patch("/{lead_id}/owner", response_model=LeadResponse)
async def update_owner(lead_id: int, data: LeadOwnerUpdate, actor: CurrentActor, svc: Service):
    return await svc.assign_owner(lead_id, data.owner_id, actor.user_id, actor.workspace_id)


@router.get("/{lead_id}/activities", response_model=list[ActivityResponse])
async def list_activities(lead_id: int, actor: CurrentActor, svc: Service):
    return await svc.get_activities(lead_id, actor.workspace_id)
