"""
FastAPI dependencies for dependency injection.
"""
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.exceptions import NotFoundError, ValidationError
from app.repositories.activity_repo import ActivityRepository
from app.repositories.lead_repo import LeadRepository
from app.repositories.rule_repo import RuleRepository
from app.repositories.workspace_repo import WorkspaceRepository
from app.services.lead_ingestor import LeadIngestor
from app.services.lead_service import LeadService
from app.services.notification_service import WhatsAppGateway
from app.services.status_notifier import StatusChangeNotifier


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]


@dataclass(frozen=True)
class Actor:
    """The acting user and the workspace the request is scoped to."""
    user_id: int
    workspace_id: int


async def get_lead_repo(db: DbSession) -> LeadRepository:
    return LeadRepository(db)


async def get_rule_repo(db: DbSession) -> RuleRepository:
    return RuleRepository(db)


async def get_activity_repo(db: DbSession) -> ActivityRepository:
    return ActivityRepository(db)


async def get_workspace_repo(db: DbSession) -> WorkspaceRepository:
    return WorkspaceRepository(db)


def get_whatsapp_gateway() -> WhatsAppGateway:
    """Get WhatsAppGateway instance. Overridden in tests."""
    return WhatsAppGateway()


async def get_lead_ingestor(
    lead_repo: Annotated[LeadRepository, Depends(get_lead_repo)],
    rule_repo: Annotated[RuleRepository, Depends(get_rule_repo)],
    activity_repo: Annotated[ActivityRepository, Depends(get_activity_repo)],
    workspace_repo: Annotated[WorkspaceRepository, Depends(get_workspace_repo)],
) -> LeadIngestor:
    return LeadIngestor(lead_repo, rule_repo, activity_repo, workspace_repo)


async def get_status_notifier(
    rule_repo: Annotated[RuleRepository, Depends(get_rule_repo)],
    lead_repo: Annotated[LeadRepository, Depends(get_lead_repo)],
    activity_repo: Annotated[ActivityRepository, Depends(get_activity_repo)],
    workspace_repo: Annotated[WorkspaceRepository, Depends(get_workspace_repo)],
    gateway: Annotated[WhatsAppGateway, Depends(get_whatsapp_gateway)],
) -> StatusChangeNotifier:
    return StatusChangeNotifier(rule_repo, lead_repo, activity_repo, workspace_repo, gateway)


async def get_lead_service(
    lead_repo: Annotated[LeadRepository, Depends(get_lead_repo)],
    activity_repo: Annotated[ActivityRepository, Depends(get_activity_repo)],
    workspace_repo: Annotated[WorkspaceRepository, Depends(get_workspace_repo)],
    notifier: Annotated[StatusChangeNotifier, Depends(get_status_notifier)],
) -> LeadService:
    return LeadService(lead_repo, activity_repo, workspace_repo, notifier)


async def get_current_actor(
    workspace_repo: Annotated[WorkspaceRepository, Depends(get_workspace_repo)],
    x_workspace_id: Annotated[int | None, Header(alias="X-Workspace-ID")] = None,
    x_user_id: Annotated[int | None, Header(alias="X-User-ID")] = None,
) -> Actor:
    """Resolve the acting member. Session authentication happens upstream of this service."""
    if x_workspace_id is None or x_user_id is None:
        raise ValidationError("X-Workspace-ID and X-User-ID headers are required", field="headers")
    member = await workspace_repo.get_member(x_workspace_id, x_user_id)
    if member is None:
        raise NotFoundError(
            "Workspace not found or you don't have access",
            context={"workspace_id": x_workspace_id},
        )
    return Actor(user_id=x_user_id, workspace_id=x_workspace_id)


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
