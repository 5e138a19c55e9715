"""
LeadService - status changes and manual ownership for existing leads.

Every status change writes a STATUS_CHANGE activity and then hands off to
the StatusChangeNotifier, whose failures never reach the caller.
"""
from datetime import datetime, UTC
from typing import TYPE_CHECKING, Any

from app.core.exceptions import NotFoundError, ValidationError
from app.core.logging import get_logger
from app.models.activity import Activity, ActivityType
from app.models.lead import Lead, LeadStatus, LeadPriority, category_for_status
from app.repositories.activity_repo import ActivityRepository
from app.repositories.lead_repo import LeadRepository
from app.repositories.workspace_repo import WorkspaceRepository

if TYPE_CHECKING:
    from app.services.status_notifier import StatusChangeNotifier

logger = get_logger(__name__)

# Inbound spellings that mean NEW_LEAD
_STATUS_ALIASES = {"NEW": LeadStatus.NEW_LEAD}


def _enum_key(value: Any) -> str:
    return str(value).strip().upper().replace(" ", "_").replace("-", "_")


def parse_status(value: Any, default: LeadStatus = LeadStatus.NEW_LEAD) -> LeadStatus:
    """Normalize a status label; unknown labels are a ValidationError."""
    if value is None or str(value).strip() == "":
        return default
    if isinstance(value, LeadStatus):
        return value
    key = _enum_key(value)
    if key in _STATUS_ALIASES:
        return _STATUS_ALIASES[key]
    try:
        return LeadStatus(key)
    except ValueError:
        allowed = [s.value for s in LeadStatus]
        raise ValidationError(f"Invalid status {value!r}. Allowed values: {allowed}", field="status")


def parse_priority(value: Any, default: LeadPriority = LeadPriority.MEDIUM) -> LeadPriority:
    if value is None or str(value).strip() == "":
        return default
    if isinstance(value, LeadPriority):
        return value
    try:
        return LeadPriority(_enum_key(value))
    except ValueError:
        allowed = [p.value for p in LeadPriority]
        raise ValidationError(f"Invalid priority {value!r}. Allowed values: {allowed}", field="priority")


class LeadService:
    def __init__(
        self,
        lead_repo: LeadRepository,
        activity_repo: ActivityRepository,
        workspace_repo: WorkspaceRepository,
        notifier: "StatusChangeNotifier",
    ):
        self.repo = lead_repo
        self.activities = activity_repo
        self.workspaces = workspace_repo
        self.notifier = notifier

    async def get_lead(self, lead_id: int, workspace_id: int) -> Lead:
        lead = await self.repo.get_by_id(lead_id, workspace_id=workspace_id)
        if not lead:
            raise NotFoundError(f"Lead {lead_id} not found", context={"lead_id": lead_id})
        return lead

    async def update_status(self, lead_id: int, new_status: Any, user_id: int | None, workspace_id: int) -> Lead:
        """Change a lead's status and fire the matching trigger.

        Unchanged status is a no-op: no activity, no notification.
        """
        status = parse_status(new_status)
        lead = await self.get_lead(lead_id, workspace_id)

        current = lead.status
        if current == status:
            return lead

        lead.status = status
        lead.category = category_for_status(status)
        if status == LeadStatus.CONVERTED:
            lead.converted_at = datetime.now(UTC)
        lead = await self.repo.save(lead)

        await self.activities.create(
            workspace_id=workspace_id,
            lead_id=lead.id,
            user_id=user_id,
            type=ActivityType.STATUS_CHANGE,
            subject="Status updated",
            description=f"Status changed from {current.value} to {status.value}",
        )
        logger.info("lead_status_changed", lead_id=lead.id, old=current.value, new=status.value)

        await self.notifier.notify_status_change(lead.id, user_id, status.value, workspace_id)
        return lead

    async def assign_owner(self, lead_id: int, owner_id: int | None, user_id: int | None, workspace_id: int) -> Lead:
        """Manually set or clear the owner of a lead."""
        lead = await self.get_lead(lead_id, workspace_id)
        if owner_id is not None and await self.workspaces.get_member(workspace_id, owner_id) is None:
            raise ValidationError(f"User {owner_id} is not a member of this workspace", field="owner_id")

        previous = lead.owner_id
        lead.owner_id = owner_id
        lead.assigned_at = datetime.now(UTC) if owner_id is not None else None
        lead = await self.repo.save(lead)

        await self.activities.create(
            workspace_id=workspace_id,
            lead_id=lead.id,
            user_id=user_id,
            type=ActivityType.LEAD_ASSIGNED,
            subject="Lead assigned" if owner_id is not None else "Lead unassigned",
            description=f"Owner changed from {previous or 'unassigned'} to {owner_id or 'unassigned'}",
        )
        return lead

    async def get_activities(self, lead_id: int, workspace_id: int) -> list[Activity]:
        await self.get_lead(lead_id, workspace_id)
        return await self.activities.get_by_lead_id(lead_id)
