"""
Automation settings: assignment rules and WhatsApp status triggers.
"""
from typing import Annotated

from fastapi import APIRouter, Depends
from starlette import status

from app.core.deps import CurrentActor, get_rule_repo, get_workspace_repo
from app.core.exceptions import NotFoundError, ValidationError
from app.models.assignment_rule import AssignmentRule
from app.repositories.rule_repo import RuleRepository
from app.repositories.workspace_repo import WorkspaceRepository
from app.schemas.automation import (
    AssignmentRuleResponse,
    AssignmentRuleToggle,
    AssignmentRuleUpsert,
    WhatsAppTriggerResponse,
    WhatsAppTriggerUpsert,
)
from app.services.lead_service import parse_status

router = APIRouter()

Rules = Annotated[RuleRepository, Depends(get_rule_repo)]


async def _get_rule(rules: RuleRepository, workspace_id: int, rule_id: int) -> AssignmentRule:
    rule = await rules.get_assignment_rule(workspace_id, rule_id)
    if rule is None:
        raise NotFoundError(f"Assignment rule {rule_id} not found", context={"rule_id": rule_id})
    return rule


@router.get("/assignment-rules", response_model=list[AssignmentRuleResponse])
async def list_assignment_rules(actor: CurrentActor, rules: Rules):
    return await rules.list_assignment_rules(actor.workspace_id)


@router.post("/assignment-rules", response_model=AssignmentRuleResponse)
async def upsert_assignment_rule(
    data: AssignmentRuleUpsert,
    actor: CurrentActor,
    rules: Rules,
    workspaces: Annotated[WorkspaceRepository, Depends(get_workspace_repo)],
):
    """Create a rule, or update it when ``id`` is given. Bookkeeping fields are never written here."""
    if await workspaces.get_member(actor.workspace_id, data.assignee_id) is None:
        raise ValidationError(
            f"User {data.assignee_id} is not a member of this workspace", field="assignee_id"
        )

    if data.id is not None:
        rule = await _get_rule(rules, actor.workspace_id, data.id)
    else:
        rule = AssignmentRule(workspace_id=actor.workspace_id)

    rule.source = data.source
    rule.assignment_type = data.assignment_type
    rule.assignee_id = data.assignee_id
    rule.percentage = data.percentage
    rule.priority = data.priority
    rule.is_enabled = data.is_enabled
    return await rules.save_assignment_rule(rule)


@router.patch("/assignment-rules/{rule_id}/toggle", response_model=AssignmentRuleResponse)
async def toggle_assignment_rule(rule_id: int, data: AssignmentRuleToggle, actor: CurrentActor, rules: Rules):
    rule = await _get_rule(rules, actor.workspace_id, rule_id)
    rule.is_enabled = data.is_enabled
    return await rules.save_assignment_rule(rule)


@router.delete("/assignment-rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_assignment_rule(rule_id: int, actor: CurrentActor, rules: Rules):
    rule = await _get_rule(rules, actor.workspace_id, rule_id)
    await rules.delete_assignment_rule(rule)


@router.get("/whatsapp-triggers", response_model=list[WhatsAppTriggerResponse])
async def list_triggers(actor: CurrentActor, rules: Rules):
    return await rules.list_triggers(actor.workspace_id)


@router.put("/whatsapp-triggers", response_model=WhatsAppTriggerResponse)
async def upsert_trigger(data: WhatsAppTriggerUpsert, actor: CurrentActor, rules: Rules):
    """One trigger per status: creates it or replaces its configuration."""
    lead_status = parse_status(data.status)
    return await rules.upsert_trigger(actor.workspace_id, lead_status.value, **data.storage_fields())
