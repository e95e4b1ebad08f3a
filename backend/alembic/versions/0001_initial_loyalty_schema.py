"""Initial loyalty schema: tenants, locations, staff, customers, ledger.

Revision ID: 0001
Revises:
Create Date: 2026-10-17
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_tenants_slug", "tenants", ["slug"], unique=True)

    op.create_table(
        "locations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("address", sa.String(500)),
        sa.Column("city", sa.String(100)),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_locations_tenant_id", "locations", ["tenant_id"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "staff_grants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("tenant_id", sa.String(36), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("location_id", sa.String(36), sa.ForeignKey("locations.id")),
        sa.Column("role", sa.String(20), nullable=False, server_default="staff"),
        sa.Column("can_register_customers", sa.Boolean(), server_default=sa.false()),
        sa.Column("can_add_stamps", sa.Boolean(), server_default=sa.false()),
        sa.Column("can_redeem_rewards", sa.Boolean(), server_default=sa.false()),
        sa.Column("can_view_customer_data", sa.Boolean(), server_default=sa.false()),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_staff_grants_user_id", "staff_grants", ["user_id"])
    op.create_index("ix_staff_grants_tenant_id", "staff_grants", ["tenant_id"])
    op.create_index("ix_staff_grants_location_id", "staff_grants", ["location_id"])

    op.create_table(
        "customers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("location_id", sa.String(36), sa.ForeignKey("locations.id")),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(30)),
        sa.Column("qr_code", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("ledger_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_by", sa.String(36)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_customers_tenant_id", "customers", ["tenant_id"])
    op.create_index("ix_customers_location_id", "customers", ["location_id"])
    op.create_index("ix_customers_email", "customers", ["email"])
    op.create_index("ix_customers_phone", "customers", ["phone"])
    op.create_index("ix_customers_qr_code", "customers", ["qr_code"], unique=True)

    op.create_table(
        "loyalty_settings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("location_id", sa.String(36), sa.ForeignKey("locations.id"), nullable=False),
        sa.Column("stamps_required", sa.Integer(), nullable=False),
        sa.Column("reward_description", sa.Text(), nullable=False),
        sa.Column("reward_value", sa.Numeric(10, 2), server_default="0"),
        sa.Column("max_stamps_per_visit", sa.Integer(), nullable=False),
        sa.Column("stamp_expiry_days", sa.Integer()),
        sa.Column("minimum_purchase_amount", sa.Numeric(10, 2)),
        sa.Column("updated_by", sa.String(36)),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_loyalty_settings_location_id", "loyalty_settings", ["location_id"], unique=True
    )

    op.create_table(
        "stamp_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("customer_id", sa.String(36), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("location_id", sa.String(36), sa.ForeignKey("locations.id"), nullable=False),
        sa.Column("tenant_id", sa.String(36), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("stamps_earned", sa.Integer(), nullable=False),
        sa.Column("purchase_amount", sa.Numeric(10, 2)),
        sa.Column("notes", sa.Text()),
        sa.Column("staff_id", sa.String(36), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("stamps_earned > 0", name="ck_stamp_events_positive"),
    )
    op.create_index("ix_stamp_events_customer_id", "stamp_events", ["customer_id"])
    op.create_index("ix_stamp_events_location_id", "stamp_events", ["location_id"])
    op.create_index("ix_stamp_events_tenant_id", "stamp_events", ["tenant_id"])
    op.create_index("ix_stamp_events_created_at", "stamp_events", ["created_at"])

    op.create_table(
        "reward_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("customer_id", sa.String(36), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("location_id", sa.String(36), sa.ForeignKey("locations.id"), nullable=False),
        sa.Column("tenant_id", sa.String(36), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("reward_type", sa.String(100), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("reward_value", sa.Numeric(10, 2), server_default="0"),
        sa.Column("stamps_used", sa.Integer(), nullable=False),
        sa.Column("staff_id", sa.String(36), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="redeemed"),
        sa.Column("redeemed_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("stamps_used > 0", name="ck_reward_events_positive"),
    )
    op.create_index("ix_reward_events_customer_id", "reward_events", ["customer_id"])
    op.create_index("ix_reward_events_location_id", "reward_events", ["location_id"])
    op.create_index("ix_reward_events_tenant_id", "reward_events", ["tenant_id"])
    op.create_index("ix_reward_events_redeemed_at", "reward_events", ["redeemed_at"])

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36)),
        sa.Column("location_id", sa.String(36)),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("user_name", sa.String(200), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(36)),
        sa.Column("entity_code", sa.String(100)),
        sa.Column("summary", sa.Text()),
        sa.Column("details", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_activity_logs_tenant_id", "activity_logs", ["tenant_id"])
    op.create_index("ix_activity_logs_location_id", "activity_logs", ["location_id"])
    op.create_index("ix_activity_logs_user_id", "activity_logs", ["user_id"])
    op.create_index("ix_activity_logs_action", "activity_logs", ["action"])
    op.create_index("ix_activity_logs_entity_type", "activity_logs", ["entity_type"])
    op.create_index("ix_activity_logs_created_at", "activity_logs", ["created_at"])
    op.create_index("ix_activity_logs_entity", "activity_logs", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_table("activity_logs")
    op.drop_table("reward_events")
    op.drop_table("stamp_events")
    op.drop_table("loyalty_settings")
    op.drop_table("customers")
    op.drop_table("staff_grants")
    op.drop_table("users")
    op.drop_table("locations")
    op.drop_table("tenants")
