"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2025-01-01 00:00:00
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

contact_status = sa.Enum(
    "ongoing", "converted", "rejected", "human_takeover", "follow_up", name="contact_status"
)
lead_temperature = sa.Enum("hot", "warm", "cold", name="lead_temperature")
message_direction = sa.Enum("incoming", "outgoing", name="message_direction")
workflow_log_status = sa.Enum("sent", "failed", name="workflow_log_status")
broadcast_status = sa.Enum("pending", "running", "completed", "failed", name="broadcast_status")


def upgrade() -> None:
    op.create_table(
        "agents",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="agent"),
        sa.Column("avatar_url", sa.String(length=512)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "workflows",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("trigger_after_days", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            # ORM-managed updated_at (no database trigger).
            nullable=False,
        ),
    )
    op.create_table(
        "workflow_steps",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "workflow_id",
            sa.Integer(),
            sa.ForeignKey("workflows.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("step_number", sa.Integer(), nullable=False),
        sa.Column("delay_hours", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("template_name", sa.String(length=255), nullable=False),
        sa.Column("template_language", sa.String(length=16), nullable=False, server_default="en_US"),
        sa.Column("template_components", sa.JSON()),
        sa.UniqueConstraint("workflow_id", "step_number", name="uq_workflow_steps_workflow_number"),
    )
    op.create_table(
        "contacts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("phone_number", sa.String(length=32), nullable=False, unique=True),
        sa.Column("profile_name", sa.String(length=255)),
        sa.Column("last_message_at", sa.DateTime(timezone=True)),
        sa.Column("unread_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", contact_status, nullable=False, server_default="ongoing"),
        sa.Column("lead_temperature", lead_temperature, nullable=False, server_default="cold"),
        sa.Column("button_click_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("assigned_agent_id", sa.Integer(), sa.ForeignKey("agents.id", ondelete="SET NULL")),
        sa.Column("workflow_id", sa.Integer(), sa.ForeignKey("workflows.id", ondelete="SET NULL")),
        sa.Column("workflow_enrollment_id", sa.Uuid()),
        sa.Column("workflow_step", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("workflow_paused", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_workflow_sent_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_contacts_last_message_at", "contacts", ["last_message_at"])
    op.create_index("ix_contacts_workflow", "contacts", ["workflow_id", "workflow_paused"])
    op.create_index("ix_contacts_status", "contacts", ["status"])

    op.create_table(
        "button_interactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "contact_id",
            sa.Integer(),
            sa.ForeignKey("contacts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("message_id", sa.String(length=128)),
        sa.Column("button_text", sa.String(length=255)),
        sa.Column("clicked_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_button_interactions_contact", "button_interactions", ["contact_id"])

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("whatsapp_message_id", sa.String(length=128), unique=True),
        sa.Column("from_number", sa.String(length=32), nullable=False),
        sa.Column("profile_name", sa.String(length=255)),
        sa.Column("message_type", sa.String(length=32), nullable=False),
        sa.Column("message_text", sa.Text()),
        sa.Column("media_id", sa.String(length=128)),
        sa.Column("media_url", sa.String(length=512)),
        sa.Column("media_mime_type", sa.String(length=128)),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("direction", message_direction, nullable=False),
        sa.Column("status", sa.String(length=32)),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_messages_from_number_timestamp", "messages", ["from_number", "timestamp"])

    op.create_table(
        "segments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False, unique=True),
        sa.Column("description", sa.String(length=1000)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "contact_segments",
        sa.Column(
            "contact_id",
            sa.Integer(),
            sa.ForeignKey("contacts.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "segment_id",
            sa.Integer(),
            sa.ForeignKey("segments.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("added_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_contact_segments_segment", "contact_segments", ["segment_id"])

    op.create_table(
        "workflow_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "contact_id",
            sa.Integer(),
            sa.ForeignKey("contacts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "workflow_id",
            sa.Integer(),
            sa.ForeignKey("workflows.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("step_number", sa.Integer(), nullable=False),
        sa.Column("status", workflow_log_status, nullable=False),
        sa.Column("error_message", sa.Text()),
        sa.Column("sent_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_workflow_logs_workflow_sent_at", "workflow_logs", ["workflow_id", "sent_at"])
    op.create_index("ix_workflow_logs_contact", "workflow_logs", ["contact_id"])

    op.create_table(
        "broadcast_jobs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("template_name", sa.String(length=255), nullable=False),
        sa.Column("language_code", sa.String(length=16), nullable=False),
        sa.Column("components", sa.JSON()),
        sa.Column("segment_id", sa.Integer(), sa.ForeignKey("segments.id", ondelete="SET NULL")),
        sa.Column("contact_ids", sa.JSON(), nullable=False),
        sa.Column("total_contacts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_sent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", broadcast_status, nullable=False, server_default="pending"),
        sa.Column("last_error", sa.String(length=255)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
    )

    op.create_table(
        "job_heartbeats",
        sa.Column("name", sa.String(length=64), primary_key=True),
        sa.Column("host", sa.String(length=255)),
        sa.Column("runs_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_heartbeat", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("last_success_at", sa.DateTime(timezone=True)),
        sa.Column("last_run_stats", sa.JSON()),
        sa.Column("last_error", sa.String(length=128)),
        sa.Column("last_error_at", sa.DateTime(timezone=True)),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False, server_default="0"),
    )


def downgrade() -> None:
    op.drop_table("job_heartbeats")
    op.drop_table("broadcast_jobs")
    op.drop_index("ix_workflow_logs_contact", table_name="workflow_logs")
    op.drop_index("ix_workflow_logs_workflow_sent_at", table_name="workflow_logs")
    op.drop_table("workflow_logs")
    op.drop_index("ix_contact_segments_segment", table_name="contact_segments")
    op.drop_table("contact_segments")
    op.drop_table("segments")
    op.drop_index("ix_messages_from_number_timestamp", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_button_interactions_contact", table_name="button_interactions")
    op.drop_table("button_interactions")
    op.drop_index("ix_contacts_status", table_name="contacts")
    op.drop_index("ix_contacts_workflow", table_name="contacts")
    op.drop_index("ix_contacts_last_message_at", table_name="contacts")
    op.drop_table("contacts")
    op.drop_table("workflow_steps")
    op.drop_table("workflows")
    op.drop_table("agents")
    for enum_type in (
        broadcast_status,
        workflow_log_status,
        message_direction,
        lead_temperature,
        contact_status,
    ):
        enum_type.drop(op.get_bind(), checkfirst=True)
