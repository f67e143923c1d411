"""Create clinical case, simulation session, statistics and event tables

Revision ID: 001
Revises:
Create Date: 2026-10-17 10:00:00.000000

"""

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    case_status = postgresql.ENUM(
        "draft", "review", "approved", "published", "archived", name="case_status"
    )
    case_difficulty = postgresql.ENUM(
        "beginner", "intermediate", "advanced", name="case_difficulty"
    )
    simulation_status = postgresql.ENUM(
        "started", "paused", "completed", "abandoned", name="simulation_status"
    )
    event_type = postgresql.ENUM("SESSION_COMPLETED", name="simulation_event_type")
    event_status = postgresql.ENUM("pending", "dispatched", name="simulation_event_status")

    # Clinical cases
    op.create_table(
        "clinical_cases",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("specialty", sa.String(100), nullable=False),
        sa.Column("difficulty", case_difficulty, nullable=False),
        sa.Column("status", case_status, nullable=False, server_default="draft"),
        sa.Column("chief_complaint", sa.Text(), nullable=False, server_default=""),
        sa.Column("max_score", sa.Integer(), nullable=False),
        sa.Column("expected_duration_seconds", sa.Integer(), nullable=False),
        sa.Column("steps_json", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("published_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_clinical_cases_status", "clinical_cases", ["status"])
    op.create_index("ix_clinical_cases_specialty", "clinical_cases", ["specialty"])

    # Simulation sessions
    op.create_table(
        "simulation_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "case_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("clinical_cases.id", onupdate="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", simulation_status, nullable=False, server_default="started"),
        sa.Column("score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_possible_score", sa.Integer(), nullable=False),
        sa.Column("percentage_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("steps_completed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_steps", sa.Integer(), nullable=False),
        sa.Column("time_spent_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "step_performance",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "pause_history",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("user_feedback", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("ended_at", sa.DateTime(), nullable=True),
        sa.Column("aggregated_at", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index(
        "ix_simulation_sessions_user_status", "simulation_sessions", ["user_id", "status"]
    )
    op.create_index(
        "ix_simulation_sessions_case_status", "simulation_sessions", ["case_id", "status"]
    )
    op.create_index("ix_simulation_sessions_ended_at", "simulation_sessions", ["ended_at"])

    # Running statistics
    op.create_table(
        "case_statistics",
        sa.Column(
            "case_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("clinical_cases.id", ondelete="CASCADE", onupdate="CASCADE"),
            primary_key=True,
        ),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completion_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("average_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("average_time_spent", sa.Float(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_table(
        "user_statistics",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("cases_completed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("average_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_time_spent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_completed_at", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )

    # Completion event outbox
    op.create_table(
        "simulation_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("event_type", event_type, nullable=False),
        sa.Column("session_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", event_status, nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("dispatched_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("session_id", "event_type", name="uq_simulation_event_session_type"),
    )
    op.create_index(
        "ix_simulation_events_status_created", "simulation_events", ["status", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_simulation_events_status_created", table_name="simulation_events")
    op.drop_table("simulation_events")
    op.drop_table("user_statistics")
    op.drop_table("case_statistics")
    op.drop_index("ix_simulation_sessions_ended_at", table_name="simulation_sessions")
    op.drop_index("ix_simulation_sessions_case_status", table_name="simulation_sessions")
    op.drop_index("ix_simulation_sessions_user_status", table_name="simulation_sessions")
    op.drop_table("simulation_sessions")
    op.drop_index("ix_clinical_cases_specialty", table_name="clinical_cases")
    op.drop_index("ix_clinical_cases_status", table_name="clinical_cases")
    op.drop_table("clinical_cases")

    for enum_name in (
        "simulation_event_status",
        "simulation_event_type",
        "simulation_status",
        "case_difficulty",
        "case_status",
    ):
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
