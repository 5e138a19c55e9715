"""
Rule Repository - the rule store for assignment rules and WhatsApp triggers.

Read paths return enabled configuration only; the single write the
automation engine performs is the compare-and-set bookkeeping update in
``apply_mutation``. The remaining methods back the settings endpoints.
"""
from typing import Iterable, Optional

from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.assignment_rule import AssignmentRule
from app.models.whatsapp_trigger import WhatsAppTrigger
from app.services.assignment import RuleMutation


class RuleRepository:
    """Repository for AssignmentRule and WhatsAppTrigger."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ──────────────────────────────────────────────
    # Automation reads
    # ──────────────────────────────────────────────

    async def get_assignment_rules(self, workspace_id: int, sources: Iterable[str | None]) -> list[AssignmentRule]:
        """Enabled rules whose source is one of ``sources`` or NULL (wildcard).

        Ordered by ascending priority, then id, so input order is stable.
        ``populate_existing`` makes a re-read after a lost compare-and-set
        see the winner's bookkeeping instead of stale identity-map state.
        """
        wanted = sorted({s for s in sources if s})
        source_clause = AssignmentRule.source.is_(None)
        if wanted:
            source_clause = or_(AssignmentRule.source.in_(wanted), source_clause)

        stmt = (
            select(AssignmentRule)
            .where(
                AssignmentRule.workspace_id == workspace_id,
                AssignmentRule.is_enabled.is_(True),
                source_clause,
            )
            .order_by(AssignmentRule.priority.asc(), AssignmentRule.id.asc())
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_trigger(self, workspace_id: int, status: str) -> Optional[WhatsAppTrigger]:
        """Enabled trigger for a status. Lowest id wins if legacy duplicates exist."""
        stmt = (
            select(WhatsAppTrigger)
            .where(
                WhatsAppTrigger.workspace_id == workspace_id,
                WhatsAppTrigger.status == status,
                WhatsAppTrigger.is_enabled.is_(True),
            )
            .order_by(WhatsAppTrigger.id.asc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def apply_mutation(self, mutation: RuleMutation) -> bool:
        """Compare-and-set the bookkeeping of one rule.

        Returns False when the rule's version moved since it was read, which
        means a concurrent ingestion already consumed this selection.
        """
        stmt = (
            update(AssignmentRule)
            .where(
                AssignmentRule.id == mutation.rule_id,
                AssignmentRule.version == mutation.expected_version,
            )
            .values(
                last_assigned_at=mutation.last_assigned_at,
                assignment_count=AssignmentRule.assignment_count + mutation.increment,
                version=AssignmentRule.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    # ──────────────────────────────────────────────
    # Settings CRUD
    # ──────────────────────────────────────────────

    async def list_assignment_rules(self, workspace_id: int) -> list[AssignmentRule]:
        stmt = (
            select(AssignmentRule)
            .where(AssignmentRule.workspace_id == workspace_id)
            .order_by(AssignmentRule.priority.asc(), AssignmentRule.id.asc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_assignment_rule(self, workspace_id: int, rule_id: int) -> Optional[AssignmentRule]:
        result = await self.db.execute(
            select(AssignmentRule).where(
                AssignmentRule.id == rule_id,
                AssignmentRule.workspace_id == workspace_id,
            )
        )
        return result.scalar_one_or_none()

    async def save_assignment_rule(self, rule: AssignmentRule) -> AssignmentRule:
        self.db.add(rule)
        await self.db.flush()
        await self.db.refresh(rule)
        return rule

    async def delete_assignment_rule(self, rule: AssignmentRule) -> None:
        await self.db.delete(rule)
        await self.db.flush()

    async def list_triggers(self, workspace_id: int) -> list[WhatsAppTrigger]:
        result = await self.db.execute(
            select(WhatsAppTrigger)
            .where(WhatsAppTrigger.workspace_id == workspace_id)
            .order_by(WhatsAppTrigger.status.asc())
        )
        return list(result.scalars().all())

    async def upsert_trigger(self, workspace_id: int, status: str, **fields) -> WhatsAppTrigger:
        """Create or update the trigger for ``(workspace_id, status)``."""
        result = await self.db.execute(
            select(WhatsAppTrigger).where(
                WhatsAppTrigger.workspace_id == workspace_id,
                WhatsAppTrigger.status == status,
            ).order_by(WhatsAppTrigger.id.asc()).limit(1)
        )
        trigger = result.scalar_one_or_none()
        if trigger is None:
            trigger = WhatsAppTrigger(workspace_id=workspace_id, status=status)
            self.db.add(trigger)
        for key, value in fields.items():
            setattr(trigger, key, value)
        await self.db.flush()
        await self.db.refresh(trigger)
        return trigger
