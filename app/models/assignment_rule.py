"""
Assignment rules used to route newly ingested leads to an owner.
"""
import enum
from datetime import datetime, UTC

from sqlalchemy import String, Integer, Float, Boolean, DateTime, Enum as SAEnum, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.core.base import Base


class AssignmentType(str, enum.Enum):
    """Strategies in precedence order: SPECIFIC beats ROUND_ROBIN beats PERCENTAGE."""
    SPECIFIC = "SPECIFIC"
    ROUND_ROBIN = "ROUND_ROBIN"
    PERCENTAGE = "PERCENTAGE"


class AssignmentRule(Base):
    """Per-workspace routing rule.

    ``source`` NULL matches every source. Lower ``priority`` wins.
    ``last_assigned_at``/``assignment_count`` are bookkeeping written only by
    the assignment step; ``version`` guards that write against concurrent
    ingestions (compare-and-set).
    """
    __tablename__ = "assignment_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workspace_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    assignment_type: Mapped[AssignmentType] = mapped_column(
        SAEnum(AssignmentType), nullable=False, default=AssignmentType.SPECIFIC
    )
    assignee_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    last_assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assignment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("ix_assignment_rules_workspace_enabled", "workspace_id", "is_enabled", "priority"),
    )

    def __repr__(self):
        return (
            f"<AssignmentRule id={self.id} type={self.assignment_type.value} "
            f"source={self.source} assignee={self.assignee_id}>"
        )
