"""
Workspace Repository - tenants, their members and users.
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User
from app.models.workspace import Workspace, WorkspaceMember, MemberRole


class WorkspaceRepository:
    """Repository for Workspace and membership lookups."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, workspace_id: int) -> Optional[Workspace]:
        result = await self.session.execute(
            select(Workspace).where(Workspace.id == workspace_id)
        )
        return result.scalar_one_or_none()

    async def get_member(self, workspace_id: int, user_id: int) -> Optional[WorkspaceMember]:
        result = await self.session.execute(
            select(WorkspaceMember).where(
                WorkspaceMember.workspace_id == workspace_id,
                WorkspaceMember.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def find_creator_id(self, workspace_id: int) -> Optional[int]:
        """First ADMIN member of the workspace, else any member, else None."""
        base = (
            select(WorkspaceMember.user_id)
            .where(WorkspaceMember.workspace_id == workspace_id)
            .order_by(WorkspaceMember.created_at.asc(), WorkspaceMember.id.asc())
            .limit(1)
        )
        result = await self.session.execute(base.where(WorkspaceMember.role == MemberRole.ADMIN))
        user_id = result.scalar_one_or_none()
        if user_id is not None:
            return user_id

        result = await self.session.execute(base)
        return result.scalar_one_or_none()

    async def create(self, workspace: Workspace) -> Workspace:
        self.session.add(workspace)
        await self.session.flush()
        await self.session.refresh(workspace)
        return workspace

    async def add_member(self, workspace_id: int, user: User, role: MemberRole = MemberRole.MEMBER) -> WorkspaceMember:
        if user.id is None:
            self.session.add(user)
            await self.session.flush()
        member = WorkspaceMember(workspace_id=workspace_id, user_id=user.id, role=role)
        self.session.add(member)
        await self.session.flush()
        return member
