"""
WhatsApp status triggers: lead status value -> templated outbound message.
"""
from datetime import datetime, UTC

from sqlalchemy import String, Integer, Boolean, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.base import Base


class WhatsAppTrigger(Base):
    __tablename__ = "whatsapp_triggers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workspace_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # LeadStatus value that fires this trigger
    status: Mapped[str] = mapped_column(String(64), nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    campaign_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    # Label sent to the provider, unrelated to Lead.source
    source: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # JSON array of tokens, e.g. ["{{FirstName}}", "{{Date}}"]
    template_params_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    # JSON object of token name -> fallback literal, e.g. {"FirstName": "Student"}
    params_fallback_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        UniqueConstraint("workspace_id", "status", name="uq_whatsapp_triggers_workspace_status"),
    )

    def __repr__(self):
        return f"<WhatsAppTrigger id={self.id} status={self.status} enabled={self.is_enabled}>"
