"""Initial schema: users, projects, API keys, settings, payments and escrow."""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None

OPEN_ESCROW_WHERE = sa.text("status IN ('PENDING', 'HELD', 'DISPUTED')")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        *_timestamps(),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("first_name", sa.String(length=100), nullable=True),
        sa.Column("last_name", sa.String(length=100), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        "api_keys",
        *_timestamps(),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("prefix", sa.String(length=32), nullable=False),
        sa.Column("key_hash", sa.String(length=128), nullable=False, unique=True),
        sa.Column("scope", sa.Enum("user", "admin", name="apiscope"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_api_keys_prefix", "api_keys", ["prefix"])
    op.create_index("ix_api_keys_user_id", "api_keys", ["user_id"])

    op.create_table(
        "projects",
        *_timestamps(),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.CheckConstraint("price >= 0", name="ck_projects_price_non_negative"),
    )
    op.create_index("ix_projects_owner_id", "projects", ["owner_id"])

    op.create_table(
        "system_settings",
        *_timestamps(),
        sa.Column("key", sa.String(length=100), nullable=False, unique=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("data_type", sa.String(length=20), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("updated_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
    )

    op.create_table(
        "payments",
        *_timestamps(),
        sa.Column("gateway", sa.String(length=20), nullable=False),
        sa.Column("provider_payment_id", sa.String(length=128), nullable=True),
        sa.Column("conversation_id", sa.String(length=128), nullable=True),
        sa.Column("buyer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column(
            "status",
            sa.Enum("INITIATED", "SUCCEEDED", "FAILED", "REFUNDED", name="paymentstatus"),
            nullable=False,
        ),
        sa.CheckConstraint("amount > 0", name="ck_payment_positive_amount"),
    )
    op.create_index("ix_payments_status", "payments", ["status"])
    op.create_index("ix_payments_provider_payment_id", "payments", ["provider_payment_id"])
    op.create_index("ix_payments_conversation_id", "payments", ["conversation_id"])
    op.create_index("ix_payments_buyer_id", "payments", ["buyer_id"])

    op.create_table(
        "escrow_transactions",
        *_timestamps(),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("buyer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("commission_rate", sa.Numeric(5, 4), nullable=False),
        sa.Column("commission_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("seller_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING", "HELD", "RELEASED", "DISPUTED", "REFUNDED", "FAILED", name="escrowstatus"),
            nullable=False,
        ),
        sa.Column("gateway", sa.String(length=20), nullable=False),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id"), nullable=True),
        sa.Column("dispute_reason", sa.Text(), nullable=True),
        sa.Column("disputed_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("released_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("disputed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_escrow_amount_positive"),
        sa.CheckConstraint("commission_amount >= 0", name="ck_escrow_commission_non_negative"),
        sa.CheckConstraint(
            "commission_rate >= 0 AND commission_rate <= 0.30",
            name="ck_escrow_commission_rate_range",
        ),
    )
    op.create_index("ix_escrow_transactions_status", "escrow_transactions", ["status"])
    op.create_index("ix_escrow_transactions_project_id", "escrow_transactions", ["project_id"])
    op.create_index("ix_escrow_transactions_buyer_id", "escrow_transactions", ["buyer_id"])
    op.create_index("ix_escrow_transactions_seller_id", "escrow_transactions", ["seller_id"])
    op.create_index(
        "uq_escrow_transactions_open_purchase",
        "escrow_transactions",
        ["project_id", "buyer_id"],
        unique=True,
        sqlite_where=OPEN_ESCROW_WHERE,
        postgresql_where=OPEN_ESCROW_WHERE,
    )

    op.create_table(
        "payment_callback_events",
        *_timestamps(),
        sa.Column("provider", sa.String(length=20), nullable=False),
        sa.Column("reference", sa.String(length=128), nullable=True),
        sa.Column("escrow_id", sa.Integer(), sa.ForeignKey("escrow_transactions.id"), nullable=True),
        sa.Column("status", sa.String(length=50), nullable=True),
        sa.Column("outcome", sa.String(length=30), nullable=False),
        sa.Column("raw_json", sa.JSON(), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_payment_callback_events_received", "payment_callback_events", ["received_at"])
    op.create_index(
        "ix_payment_callback_events_reference", "payment_callback_events", ["provider", "reference"]
    )

    op.create_table(
        "audit_logs",
        *_timestamps(),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("data_json", sa.JSON(), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity", "entity_id"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("payment_callback_events")
    op.drop_index("uq_escrow_transactions_open_purchase", table_name="escrow_transactions")
    op.drop_table("escrow_transactions")
    op.drop_table("payments")
    op.drop_table("system_settings")
    op.drop_table("projects")
    op.drop_table("api_keys")
    op.drop_table("users")
    if op.get_bind().dialect.name == "postgresql":
        for enum_name in ("escrowstatus", "paymentstatus", "apiscope"):
            op.execute(f"DROP TYPE IF EXISTS {enum_name}")
