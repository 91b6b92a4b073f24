from __future__ import annotations

from datetime import datetime
from enum import Enum

import sqlalchemy as sa
from sqlalchemy import DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from wa_dashboard.infra.db import Base


class BroadcastStatus(str, Enum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"


class BroadcastJob(Base):
    __tablename__ = "broadcast_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    template_name: Mapped[str] = mapped_column(String(255), nullable=False)
    language_code: Mapped[str] = mapped_column(String(16), nullable=False)
    components: Mapped[list | None] = mapped_column(JSON)
    segment_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("segments.id", ondelete="SET NULL")
    )
    contact_ids: Mapped[list] = mapped_column(JSON, nullable=False)
    total_contacts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_sent: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    status: Mapped[BroadcastStatus] = mapped_column(
        sa.Enum(BroadcastStatus, name="broadcast_status"),
        nullable=False,
        default=BroadcastStatus.pending,
        server_default=BroadcastStatus.pending.value,
    )
    last_error: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
