from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from wa_dashboard.domain.contacts.statuses import ContactStatus, LeadTemperature
from wa_dashboard.infra.db import Base


class Contact(Base):
    __tablename__ = "contacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    profile_name: Mapped[str | None] = mapped_column(String(255))
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    unread_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    status: Mapped[ContactStatus] = mapped_column(
        sa.Enum(ContactStatus, name="contact_status"),
        nullable=False,
        default=ContactStatus.ongoing,
        server_default=ContactStatus.ongoing.value,
    )
    lead_temperature: Mapped[LeadTemperature] = mapped_column(
        sa.Enum(LeadTemperature, name="lead_temperature"),
        nullable=False,
        default=LeadTemperature.cold,
        server_default=LeadTemperature.cold.value,
    )
    button_click_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    assigned_agent_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("agents.id", ondelete="SET NULL")
    )
    # Workflow enrollment. Only ever written through wa_dashboard.domain.workflows.enrollment.
    workflow_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("workflows.id", ondelete="SET NULL"))
    workflow_enrollment_id: Mapped[uuid.UUID | None] = mapped_column(sa.Uuid(as_uuid=True))
    workflow_step: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    workflow_paused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    last_workflow_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_contacts_last_message_at", "last_message_at"),
        Index("ix_contacts_workflow", "workflow_id", "workflow_paused"),
        Index("ix_contacts_status", "status"),
    )


class ButtonInteraction(Base):
    __tablename__ = "button_interactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contact_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False
    )
    message_id: Mapped[str | None] = mapped_column(String(128))
    button_text: Mapped[str | None] = mapped_column(String(255))
    clicked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (Index("ix_button_interactions_contact", "contact_id"),)
