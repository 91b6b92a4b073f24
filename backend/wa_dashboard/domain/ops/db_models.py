from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from wa_dashboard.infra.db import Base


class JobHeartbeat(Base):
    """One row per background job. ``/readyz`` reads the workflow engine's row."""

    __tablename__ = "job_heartbeats"

    name: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    host: Mapped[str | None] = mapped_column(sa.String(255))
    runs_total: Mapped[int] = mapped_column(sa.Integer, default=0, nullable=False)
    last_heartbeat: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    last_success_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True))
    # Counters from the last successful pass (enrolled, sent, failed, stale, ...).
    last_run_stats: Mapped[dict | None] = mapped_column(sa.JSON)
    last_error: Mapped[str | None] = mapped_column(sa.String(128))
    last_error_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True))
    consecutive_failures: Mapped[int] = mapped_column(sa.Integer, default=0, nullable=False)
