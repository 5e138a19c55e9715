"""
Activity model: append-only audit trail of system and user actions on a lead.
"""
import enum
from datetime import datetime, UTC
from typing import Optional

from sqlalchemy import Integer, String, DateTime, ForeignKey, Text, Index, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.base import Base


class ActivityType(str, enum.Enum):
    SYSTEM = "SYSTEM"
    WHATSAPP = "WHATSAPP"
    STATUS_CHANGE = "STATUS_CHANGE"
    LEAD_ASSIGNED = "LEAD_ASSIGNED"


class Activity(Base):
    """One row per logically significant action, success or failure."""

    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    workspace_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True
    )
    lead_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("leads.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Actor; NULL for purely system-driven actions
    user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)

    type: Mapped[ActivityType] = mapped_column(SAEnum(ActivityType), nullable=False)
    subject: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC)
    )

    lead = relationship("Lead", back_populates="activities")

    __table_args__ = (
        Index("ix_activities_lead_created", "lead_id", "created_at"),
        Index("ix_activities_workspace_type", "workspace_id", "type"),
    )

    def __repr__(self):
        return f"<Activity id={self.id} lead_id={self.lead_id} type={self.type.value}>"
