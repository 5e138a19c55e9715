"""
Inbound lead webhook (Zapier, Pabbly, Make.com, ad platforms...).
"""
import hmac
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Header, Response
from starlette import status

from app.core.deps import get_lead_ingestor, get_workspace_repo
from app.core.exceptions import AuthenticationError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.repositories.workspace_repo import WorkspaceRepository
from app.schemas.lead import IngestResponse, LeadResponse
from app.services.lead_ingestor import IngestOrigin, LeadIngestor

logger = get_logger(__name__)

router = APIRouter()


def _verify_token(expected: str | None, provided: str) -> bool:
    if not expected:
        return False
    return hmac.compare_digest(expected.encode(), provided.encode())


@router.post("/lead", response_model=IngestResponse)
async def receive_lead(
    response: Response,
    payload: Annotated[dict[str, Any], Body()],
    ingestor: Annotated[LeadIngestor, Depends(get_lead_ingestor)],
    workspace_repo: Annotated[WorkspaceRepository, Depends(get_workspace_repo)],
    x_workspace_id: Annotated[str | None, Header(alias="x-workspace-id")] = None,
    x_webhook_token: Annotated[str | None, Header(alias="x-webhook-token")] = None,
):
    """Create a lead, or update the existing one with the same phone number."""
    if not x_workspace_id:
        raise ValidationError("Please provide x-workspace-id in headers", field="x-workspace-id")
    try:
        workspace_id = int(x_workspace_id)
    except ValueError:
        raise NotFoundError("Invalid workspace ID", context={"workspace_id": x_workspace_id})

    workspace = await workspace_repo.get_by_id(workspace_id)
    if workspace is None:
        raise NotFoundError("Invalid workspace ID", context={"workspace_id": workspace_id})

    if not x_webhook_token:
        raise AuthenticationError("Please provide x-webhook-token in headers", code="missing_webhook_token")
    if not _verify_token(workspace.webhook_token, x_webhook_token):
        logger.warning("webhook_invalid_token", workspace_id=workspace_id)
        raise AuthenticationError("Invalid webhook token")

    result = await ingestor.ingest(payload, workspace_id, origin=IngestOrigin.WEBHOOK)

    if result.action == "created":
        response.status_code = status.HTTP_201_CREATED
        message = "Lead created successfully"
    else:
        message = "Lead updated successfully"

    return IngestResponse(
        message=message,
        action=result.action,
        assignment_strategy=result.strategy,
        note=result.note,
        lead=LeadResponse.model_validate(result.lead),
    )


@router.get("/lead")
async def describe_webhook():
    """Self-description so integrators can check the endpoint is reachable."""
    return {
        "success": True,
        "message": "Lead webhook endpoint is active",
        "endpoint": "/api/webhooks/lead",
        "method": "POST",
        "requiredHeaders": {
            "x-workspace-id": "Your workspace ID (required)",
            "x-webhook-token": "Your workspace webhook token (required)",
            "Content-Type": "application/json",
        },
        "requiredFields": {
            "firstName": "string (aliases: first_name, fname)",
            "phone": "string (aliases: mobile, phone_number)",
        },
        "optionalFields": {
            "lastName": "string",
            "email": "string",
            "source": "WEBSITE | FACEBOOK | GOOGLE | REFERRAL | etc.",
            "status": "NEW_LEAD | CONTACTED | QUALIFIED | etc.",
            "priority": "LOW | MEDIUM | HIGH",
            "courseInterested": "string",
            "customFields": "object",
        },
    }
