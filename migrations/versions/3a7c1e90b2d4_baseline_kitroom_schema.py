"""baseline kitroom schema

Revision ID: 3a7c1e90b2d4
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3a7c1e90b2d4"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table("categories"):
        op.create_table(
            "categories",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=50), nullable=False, unique=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("color", sa.String(length=7), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        )

    if not inspector.has_table("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("username", sa.String(length=50), nullable=False, unique=True),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False, unique=True),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="user"),
            sa.Column("phone", sa.String(length=20), nullable=True),
            sa.Column("department", sa.String(length=50), nullable=True),
            sa.Column("pin_hash", sa.String(length=255), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        )
        op.create_index("ix_users_email", "users", ["email"])

    if not inspector.has_table("equipment"):
        op.create_table(
            "equipment",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("serial_number", sa.String(length=100), nullable=True),
            sa.Column("barcode", sa.String(length=32), nullable=True),
            sa.Column("model", sa.String(length=100), nullable=True),
            sa.Column("manufacturer", sa.String(length=100), nullable=True),
            sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=True),
            sa.Column("purchase_date", sa.Date(), nullable=True),
            sa.Column("purchase_price", sa.Numeric(10, 2), nullable=True),
            sa.Column("current_value", sa.Numeric(10, 2), nullable=True),
            sa.Column("condition", sa.String(length=20), nullable=False, server_default="normal"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="available"),
            sa.Column("location", sa.String(length=20), nullable=False, server_default="studio"),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("needs_relabeling", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        )
        op.create_index("ix_equipment_serial_number", "equipment", ["serial_number"])
        op.create_index("ix_equipment_barcode", "equipment", ["barcode"])
        op.create_index("ix_equipment_category_id", "equipment", ["category_id"])
        op.create_index("ix_equipment_is_active", "equipment", ["is_active"])
        op.create_index(
            "uq_equipment_active_barcode",
            "equipment",
            ["barcode"],
            unique=True,
            sqlite_where=sa.text("is_active = 1"),
            postgresql_where=sa.text("is_active"),
        )

    if not inspector.has_table("transactions"):
        op.create_table(
            "transactions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("transaction_type", sa.String(length=20), nullable=False),
            sa.Column("equipment_id", sa.Integer(), sa.ForeignKey("equipment.id"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("batch_id", sa.String(length=50), nullable=True),
            sa.Column("return_batch_id", sa.String(length=50), nullable=True),
            sa.Column("checkout_date", sa.DateTime(), nullable=True),
            sa.Column("expected_return_date", sa.DateTime(), nullable=True),
            sa.Column("actual_return_date", sa.DateTime(), nullable=True),
            sa.Column("condition_on_checkout", sa.String(length=20), nullable=True),
            sa.Column("condition_on_return", sa.String(length=20), nullable=True),
            sa.Column("purpose", sa.String(length=50), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("checked_in_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        )
        op.create_index("ix_transactions_transaction_type", "transactions", ["transaction_type"])
        op.create_index("ix_transactions_equipment_id", "transactions", ["equipment_id"])
        op.create_index("ix_transactions_user_id", "transactions", ["user_id"])
        op.create_index("ix_transactions_batch_id", "transactions", ["batch_id"])
        op.create_index("ix_transactions_return_batch_id", "transactions", ["return_batch_id"])
        op.create_index("ix_transactions_purpose", "transactions", ["purpose"])
        op.create_index("ix_transactions_dates", "transactions", ["checkout_date", "actual_return_date"])
        op.create_index(
            "uq_transactions_open_per_equipment",
            "transactions",
            ["equipment_id"],
            unique=True,
            sqlite_where=sa.text("actual_return_date IS NULL"),
            postgresql_where=sa.text("actual_return_date IS NULL"),
        )

    if not inspector.has_table("activity_logs"):
        op.create_table(
            "activity_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("action", sa.String(length=120), nullable=False),
            sa.Column("target_type", sa.String(length=120), nullable=True),
            sa.Column("target_id", sa.Integer(), nullable=True),
            sa.Column("batch_id", sa.String(length=50), nullable=True),
            sa.Column("summary", sa.String(length=255), nullable=True),
            sa.Column("meta", sa.JSON(), nullable=True),
        )
        op.create_index("ix_activity_logs_created_at", "activity_logs", ["created_at"])
        op.create_index("ix_activity_logs_user_id", "activity_logs", ["user_id"])
        op.create_index("ix_activity_logs_batch_id", "activity_logs", ["batch_id"])


def downgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    for table in ("activity_logs", "transactions", "equipment", "users", "categories"):
        if inspector.has_table(table):
            op.drop_table(table)
