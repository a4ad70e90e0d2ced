"""costing core: staff, quotes/jobs, cost records, rate cards, P&L summary, audit, event bus

Revision ID: 0001_costing_core
Revises:
Create Date: 2026-10-18T09:00:00Z
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_costing_core"
down_revision = None
branch_labels = None
depends_on = None


def _id():
    return sa.Column("id", sa.String(length=36), primary_key=True)


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def _updated_at():
    return sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def _money(name, nullable=False):
    if nullable:
        return sa.Column(name, sa.Numeric(12, 2), nullable=True)
    return sa.Column(name, sa.Numeric(12, 2), nullable=False, server_default="0")


def upgrade():
    # Collaborator tables (owned elsewhere; only what costing reads)
    op.create_table(
        "auth_user",
        _id(),
        _created_at(),
        sa.Column("email", sa.String(length=256), nullable=False),
        sa.Column("full_name", sa.String(length=256), nullable=False, server_default=""),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="SALES"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_auth_user_email", "auth_user", ["email"], unique=True)

    op.create_table(
        "quote",
        _id(),
        _created_at(),
        sa.Column("quote_number", sa.String(length=32), nullable=False, unique=True),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="draft"),
        _money("total_amount"),
        _money("labour_estimate", nullable=True),
    )

    op.create_table(
        "job",
        _id(),
        _created_at(),
        sa.Column("job_number", sa.String(length=32), nullable=False, unique=True),
        sa.Column("quote_id", sa.String(length=36), sa.ForeignKey("quote.id"), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="accepted"),
    )
    op.create_index("ix_job_quote_id", "job", ["quote_id"], unique=False)

    # Rate cards
    op.create_table(
        "staff_rate_card",
        _id(),
        _created_at(),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("auth_user.id"), nullable=False),
        sa.Column("rate_type", sa.String(length=32), nullable=False),
        sa.Column("hourly_rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("effective_from", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("effective_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index("ix_staff_rate_card_user_id", "staff_rate_card", ["user_id"], unique=False)
    op.create_index("ix_rate_card_lookup", "staff_rate_card", ["user_id", "rate_type", "effective_from"], unique=False)

    # Contributing cost records
    op.create_table(
        "quote_cost_component",
        _id(),
        _created_at(),
        _updated_at(),
        sa.Column("quote_id", sa.String(length=36), sa.ForeignKey("quote.id"), nullable=False),
        sa.Column("job_id", sa.String(length=36), sa.ForeignKey("job.id"), nullable=True),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("unit", sa.String(length=16), nullable=False),
        sa.Column("description", sa.String(length=512), nullable=False),
        sa.Column("quantity", sa.Numeric(12, 2), nullable=False, server_default="1"),
        sa.Column("unit_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("staff_id", sa.String(length=36), sa.ForeignKey("auth_user.id"), nullable=True),
        sa.Column("material_source", sa.String(length=32), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index("ix_quote_cost_component_quote_id", "quote_cost_component", ["quote_id"], unique=False)
    op.create_index("ix_quote_cost_component_job_id", "quote_cost_component", ["job_id"], unique=False)

    op.create_table(
        "quote_trip",
        _id(),
        _created_at(),
        sa.Column("quote_id", sa.String(length=36), sa.ForeignKey("quote.id"), nullable=False),
        sa.Column("job_id", sa.String(length=36), sa.ForeignKey("job.id"), nullable=True),
        sa.Column("trip_type", sa.String(length=32), nullable=False),
        sa.Column("staff_id", sa.String(length=36), sa.ForeignKey("auth_user.id"), nullable=False),
        sa.Column("scheduled_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("start_location", sa.Text(), nullable=True),
        sa.Column("end_location", sa.Text(), nullable=True),
        sa.Column("distance_km", sa.Numeric(10, 2), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        _money("fuel_cost", nullable=True),
        _money("travel_cost_total", nullable=True),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="not_started"),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index("ix_quote_trip_quote_id", "quote_trip", ["quote_id"], unique=False)
    op.create_index("ix_quote_trip_job_id", "quote_trip", ["job_id"], unique=False)
    op.create_index("ix_quote_trip_staff_id", "quote_trip", ["staff_id"], unique=False)

    op.create_table(
        "quote_admin_time",
        _id(),
        _created_at(),
        sa.Column("quote_id", sa.String(length=36), sa.ForeignKey("quote.id"), nullable=False),
        sa.Column("job_id", sa.String(length=36), sa.ForeignKey("job.id"), nullable=True),
        sa.Column("staff_id", sa.String(length=36), sa.ForeignKey("auth_user.id"), nullable=False),
        sa.Column("activity_type", sa.String(length=32), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _money("hourly_rate", nullable=True),
        _money("total_cost", nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_auto_tracked", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_quote_admin_time_quote_id", "quote_admin_time", ["quote_id"], unique=False)
    op.create_index("ix_quote_admin_time_job_id", "quote_admin_time", ["job_id"], unique=False)
    op.create_index("ix_quote_admin_time_staff_id", "quote_admin_time", ["staff_id"], unique=False)

    op.create_table(
        "quote_ground_condition",
        _id(),
        _created_at(),
        sa.Column("quote_id", sa.String(length=36), sa.ForeignKey("quote.id"), nullable=False),
        sa.Column("condition", sa.String(length=32), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("affected_length_meters", sa.Numeric(10, 2), nullable=True),
        _money("additional_cost", nullable=True),
        sa.Column("additional_time_minutes", sa.Integer(), nullable=True),
    )
    op.create_index("ix_quote_ground_condition_quote_id", "quote_ground_condition", ["quote_id"], unique=False)

    # Derived P&L (written only by the rollup)
    op.create_table(
        "quote_pl_summary",
        _id(),
        _created_at(),
        _updated_at(),
        sa.Column("quote_id", sa.String(length=36), sa.ForeignKey("quote.id"), nullable=False, unique=True),
        sa.Column("job_id", sa.String(length=36), sa.ForeignKey("job.id"), nullable=True),
        _money("total_revenue"),
        _money("materials_cost"),
        _money("manufacturing_labour_cost"),
        _money("installation_labour_cost"),
        _money("travel_cost"),
        _money("admin_cost"),
        _money("supplier_delivery_fees"),
        _money("third_party_cost"),
        _money("ground_conditions_cost"),
        _money("total_cost"),
        _money("profit_amount"),
        _money("profit_margin_percent"),
        sa.Column("is_supply_only", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("actual_trip_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_manufacturing_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_install_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_admin_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_travel_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_calculated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_quote_pl_summary_job_id", "quote_pl_summary", ["job_id"], unique=False)

    # Audit
    op.create_table(
        "sys_audit_log",
        _id(),
        _created_at(),
        sa.Column("tenant_id", sa.String(length=64), nullable=False, server_default="default"),
        sa.Column("actor", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=True),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=256), nullable=True),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("payload", sa.JSON(), nullable=False),
    )
    for col in ("tenant_id", "actor", "action", "entity_type", "entity_id", "request_id"):
        op.create_index(f"ix_sys_audit_log_{col}", "sys_audit_log", [col], unique=False)
    op.create_index("ix_audit_tenant_time", "sys_audit_log", ["tenant_id", "created_at"], unique=False)

    # Event bus: transactional outbox + webhook subscriptions
    op.create_table(
        "outbox_event",
        _id(),
        _created_at(),
        sa.Column("topic", sa.String(length=128), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_outbox_event_topic", "outbox_event", ["topic"], unique=False)
    op.create_index("ix_outbox_topic_created", "outbox_event", ["topic", "created_at"], unique=False)
    op.create_index("ix_outbox_delivery", "outbox_event", ["delivered", "available_at"], unique=False)

    op.create_table(
        "event_subscription",
        _id(),
        _created_at(),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("topic_pattern", sa.String(length=128), nullable=False),
        sa.Column("target_url", sa.Text(), nullable=False),
        sa.Column("headers", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("failure_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_delivered_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_event_subscription_topic_pattern", "event_subscription", ["topic_pattern"], unique=False)
    op.create_index("ix_event_sub_active", "event_subscription", ["is_active", "topic_pattern"], unique=False)


def downgrade():
    op.drop_table("event_subscription")
    op.drop_table("outbox_event")
    op.drop_table("sys_audit_log")
    op.drop_table("quote_pl_summary")
    op.drop_table("quote_ground_condition")
    op.drop_table("quote_admin_time")
    op.drop_table("quote_trip")
    op.drop_table("quote_cost_component")
    op.drop_table("staff_rate_card")
    op.drop_table("job")
    op.drop_table("quote")
    op.drop_table("auth_user")
