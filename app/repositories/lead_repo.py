"""
Lead Repository - Data Access Layer for Lead model.
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.lead import Lead


class LeadRepository:
    """Repository for Lead persistence."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, lead: Lead) -> Lead:
        """Create a new lead."""
        self.db.add(lead)
        await self.db.flush()
        await self.db.refresh(lead)
        return lead

    async def get_by_id(self, lead_id: int, workspace_id: Optional[int] = None) -> Optional[Lead]:
        """Get lead by ID, optionally scoped to a workspace."""
        stmt = select(Lead).where(Lead.id == lead_id)
        if workspace_id is not None:
            stmt = stmt.where(Lead.workspace_id == workspace_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_phone(self, workspace_id: int, phone: str) -> Optional[Lead]:
        """Exact-match lookup on the (workspace_id, phone) dedup key."""
        stmt = (
            select(Lead)
            .where(Lead.workspace_id == workspace_id, Lead.phone == phone)
            .order_by(Lead.id.asc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def save(self, lead: Lead) -> Lead:
        """Save lead changes."""
        await self.db.flush()
        await self.db.refresh(lead)
        return lead
