"""
Lead model and the status/source vocabularies that drive ingestion and triggers.
"""
import enum
from datetime import datetime, UTC
from typing import TYPE_CHECKING

from sqlalchemy import String, Float, Integer, DateTime, Enum as SAEnum, ForeignKey, Text, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.base import Base

if TYPE_CHECKING:
    from app.models.activity import Activity


class LeadSource(str, enum.Enum):
    """Canonical lead sources. Raw inbound values are mapped onto these."""
    WEBSITE = "WEBSITE"
    FACEBOOK = "FACEBOOK"
    INSTAGRAM = "INSTAGRAM"
    GOOGLE_ADS = "GOOGLE_ADS"
    LINKEDIN = "LINKEDIN"
    REFERRAL = "REFERRAL"
    WALK_IN = "WALK_IN"
    PHONE_INQUIRY = "PHONE_INQUIRY"
    WHATSAPP = "WHATSAPP"
    EMAIL_CAMPAIGN = "EMAIL_CAMPAIGN"
    EXHIBITION = "EXHIBITION"
    PARTNER = "PARTNER"
    WEBHOOK = "WEBHOOK"
    OTHER = "OTHER"


class LeadCategory(str, enum.Enum):
    """Coarse pipeline bucket derived from the status."""
    FRESH = "FRESH"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class LeadStatus(str, enum.Enum):
    # Fresh
    NEW_LEAD = "NEW_LEAD"
    # Active
    INTERESTED = "INTERESTED"
    JUST_CURIOUS = "JUST_CURIOUS"
    FOLLOW_UP = "FOLLOW_UP"
    CONTACTED = "CONTACTED"
    QUALIFIED = "QUALIFIED"
    NEGOTIATION = "NEGOTIATION"
    # Closed
    NO_RESPONSE = "NO_RESPONSE"
    NOT_INTERESTED = "NOT_INTERESTED"
    CONVERTED = "CONVERTED"
    LOST = "LOST"
    DO_NOT_CONTACT = "DO_NOT_CONTACT"
    WON = "WON"
    DONE = "DONE"


class LeadPriority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


ACTIVE_STATUSES = frozenset({
    LeadStatus.INTERESTED,
    LeadStatus.JUST_CURIOUS,
    LeadStatus.FOLLOW_UP,
    LeadStatus.CONTACTED,
    LeadStatus.QUALIFIED,
    LeadStatus.NEGOTIATION,
})


def category_for_status(status: LeadStatus) -> LeadCategory:
    """Derive the pipeline category from a status."""
    if status == LeadStatus.NEW_LEAD:
        return LeadCategory.FRESH
    if status in ACTIVE_STATUSES:
        return LeadCategory.ACTIVE
    return LeadCategory.CLOSED


class Lead(Base):
    """Lead record.

    ``(workspace_id, phone)`` is a soft-unique key: the ingestor merges a
    second inbound lead with the same phone into the existing row.
    ``owner_id`` stays NULL when no assignment rule matched.
    """
    __tablename__ = "leads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workspace_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True
    )

    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    email: Mapped[str | None] = mapped_column(String(256), nullable=True)
    phone: Mapped[str] = mapped_column(String(32), nullable=False)

    source: Mapped[LeadSource] = mapped_column(SAEnum(LeadSource), nullable=False, default=LeadSource.OTHER)
    status: Mapped[LeadStatus] = mapped_column(
        SAEnum(LeadStatus), nullable=False, default=LeadStatus.NEW_LEAD
    )
    category: Mapped[LeadCategory] = mapped_column(
        SAEnum(LeadCategory), nullable=False, default=LeadCategory.FRESH
    )
    priority: Mapped[LeadPriority] = mapped_column(
        SAEnum(LeadPriority), nullable=False, default=LeadPriority.MEDIUM
    )

    # Location
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    state: Mapped[str | None] = mapped_column(String(128), nullable=True)
    country: Mapped[str | None] = mapped_column(String(128), nullable=True)
    pincode: Mapped[str | None] = mapped_column(String(16), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Interest
    course_interested: Mapped[str | None] = mapped_column(String(256), nullable=True)
    course_level: Mapped[str | None] = mapped_column(String(64), nullable=True)
    preferred_batch: Mapped[str | None] = mapped_column(String(64), nullable=True)
    budget: Mapped[float | None] = mapped_column(Float, nullable=True)
    tags: Mapped[str | None] = mapped_column(String(512), nullable=True)
    campaign: Mapped[str | None] = mapped_column(String(256), nullable=True)

    # Opaque JSON object, stored as text
    custom_fields: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Ownership
    owner_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)

    converted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    activities: Mapped[list["Activity"]] = relationship(
        "Activity",
        back_populates="lead",
        cascade="all, delete-orphan",
        order_by="Activity.created_at.desc()",
    )

    __table_args__ = (
        Index("ix_leads_workspace_phone", "workspace_id", "phone"),
    )

    def __repr__(self):
        return f"<Lead id={self.id} phone={self.phone} status={self.status.value}>"
