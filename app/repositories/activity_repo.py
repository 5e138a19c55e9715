from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.activity import Activity, ActivityType


class ActivityRepository:
    """Append-only access to the lead activity log."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        *,
        workspace_id: int,
        lead_id: int,
        type: ActivityType,
        subject: str,
        description: str | None = None,
        user_id: int | None = None,
    ) -> Activity:
        activity = Activity(
            workspace_id=workspace_id,
            lead_id=lead_id,
            user_id=user_id,
            type=type,
            subject=subject,
            description=description,
        )
        self.db.add(activity)
        await self.db.flush()
        return activity

    async def get_by_lead_id(self, lead_id: int, type: ActivityType | None = None) -> list[Activity]:
        """Fetch activity records for a lead, newest first."""
        stmt = select(Activity).where(Activity.lead_id == lead_id)
        if type is not None:
            stmt = stmt.where(Activity.type == type)
        stmt = stmt.order_by(Activity.created_at.desc(), Activity.id.desc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
