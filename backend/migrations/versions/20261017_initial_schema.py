"""Initial schema: tenancy, sessions, carts, orders, audit trail, credit ledger

Revision ID: 20261017_initial
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_initial"
down_revision = None
branch_labels = None
depends_on = None

NOW = sa.text("(CURRENT_TIMESTAMP)")


def _timestamps(*, updated=True):
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False)]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False))
    return cols


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("phone", name="uq_users_phone"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index("ix_users_phone", ["phone"], unique=False)
        batch_op.create_index("ix_users_role", ["role"], unique=False)

    op.create_table(
        "shops",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("contact_phone", sa.String(20), nullable=True),
        sa.Column("has_stock_availability", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_delivery_available", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("delivery_fee_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("shops", schema=None) as batch_op:
        batch_op.create_index("ix_shops_owner_id", ["owner_id"], unique=False)

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("shop_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("sku", sa.String(100), nullable=True),
        sa.Column("image", sa.Text(), nullable=True),
        sa.Column("specifications", sa.JSON(), nullable=True),
        sa.Column("sale_price_cents", sa.Integer(), nullable=False),
        sa.Column("discount_price_cents", sa.Integer(), nullable=True),
        sa.Column("has_stock", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("status", sa.String(16), nullable=False, server_default="ACTIVE"),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_shop_id", ["shop_id"], unique=False)
        batch_op.create_index("ix_products_shop_status", ["shop_id", "status"], unique=False)

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("session_tokens", schema=None) as batch_op:
        batch_op.create_index("ix_session_tokens_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_session_tokens_token_hash", ["token_hash"], unique=True)
        batch_op.create_index("ix_session_tokens_expires_at", ["expires_at"], unique=False)
        batch_op.create_index("ix_session_tokens_user_active", ["user_id", "is_revoked"], unique=False)

    op.create_table(
        "carts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("shop_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="ACTIVE"),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("item_savings_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("delivery_fee_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_items", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_quantity", sa.Numeric(12, 3), nullable=False, server_default=sa.text("0")),
        sa.Column("session_id", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("carts", schema=None) as batch_op:
        batch_op.create_index("ix_carts_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_carts_shop_id", ["shop_id"], unique=False)
        batch_op.create_index("ix_carts_status", ["status"], unique=False)
        batch_op.create_index("ix_carts_user_status", ["user_id", "status"], unique=False)
    op.create_index(
        "uq_carts_active_user_shop",
        "carts",
        ["user_id", "shop_id"],
        unique=True,
        sqlite_where=sa.text("status = 'ACTIVE'"),
        postgresql_where=sa.text("status = 'ACTIVE'"),
    )

    op.create_table(
        "cart_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cart_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Numeric(12, 3), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("unit_discount_price_cents", sa.Integer(), nullable=True),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("product_image", sa.Text(), nullable=True),
        sa.Column("product_sku", sa.String(100), nullable=False, server_default=""),
        sa.Column("product_specs", sa.JSON(), nullable=True),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("unavailable_reason", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["cart_id"], ["carts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("cart_id", "product_id", name="uq_cart_items_cart_product"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cart_items", schema=None) as batch_op:
        batch_op.create_index("ix_cart_items_cart_id", ["cart_id"], unique=False)
        batch_op.create_index("ix_cart_items_product_id", ["product_id"], unique=False)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_number", sa.String(64), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("shop_id", sa.Integer(), nullable=False),
        sa.Column("cart_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="ORDER_PLACED"),
        sa.Column("order_type", sa.String(16), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("extra_charges_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("delivery_fee_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_items", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_quantity", sa.Numeric(12, 3), nullable=False, server_default=sa.text("0")),
        sa.Column("pickup_date", sa.String(10), nullable=True),
        sa.Column("pickup_time", sa.String(16), nullable=True),
        sa.Column("pickup_notes", sa.Text(), nullable=True),
        sa.Column("delivery_address", sa.Text(), nullable=True),
        sa.Column("delivery_landmark", sa.String(255), nullable=True),
        sa.Column("delivery_pincode", sa.String(10), nullable=True),
        sa.Column("delivery_city", sa.String(100), nullable=True),
        sa.Column("delivery_state", sa.String(100), nullable=True),
        sa.Column("delivery_contact_number", sa.String(20), nullable=True),
        sa.Column("delivery_notes", sa.Text(), nullable=True),
        sa.Column("customer_phone", sa.String(20), nullable=True),
        sa.Column("payment_method", sa.String(32), nullable=False),
        sa.Column("payment_status", sa.String(24), nullable=False, server_default="PENDING"),
        sa.Column("payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_transaction_id", sa.String(255), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("packed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        sa.Column("estimated_delivery_date", sa.String(10), nullable=True),
        sa.Column("estimated_delivery_time", sa.String(16), nullable=True),
        sa.Column("customer_notes", sa.Text(), nullable=True),
        sa.Column("shop_notes", sa.Text(), nullable=True),
        sa.Column("has_shop_modifications", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_number", name="uq_orders_order_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.create_index("ix_orders_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_orders_shop_id", ["shop_id"], unique=False)
        batch_op.create_index("ix_orders_status", ["status"], unique=False)
        batch_op.create_index("ix_orders_customer_phone", ["customer_phone"], unique=False)
        batch_op.create_index("ix_orders_payment_method", ["payment_method"], unique=False)
        batch_op.create_index("ix_orders_payment_status", ["payment_status"], unique=False)
        batch_op.create_index("ix_orders_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_orders_shop_status_created", ["shop_id", "status", "created_at"], unique=False)
        batch_op.create_index("ix_orders_user_created", ["user_id", "created_at"], unique=False)

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=True),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("product_image", sa.Text(), nullable=True),
        sa.Column("product_sku", sa.String(100), nullable=False, server_default=""),
        sa.Column("product_specs", sa.JSON(), nullable=True),
        sa.Column("quantity", sa.Numeric(12, 3), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("unit_discount_price_cents", sa.Integer(), nullable=True),
        sa.Column("item_discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(24), nullable=False, server_default="AVAILABLE"),
        sa.Column("unavailable_reason", sa.String(255), nullable=True),
        sa.Column("is_added_by_shop", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_modified_by_shop", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("original_cart_item_id", sa.Integer(), nullable=True),
        sa.Column("original_quantity", sa.Numeric(12, 3), nullable=True),
        sa.Column("original_unit_price_cents", sa.Integer(), nullable=True),
        sa.Column("customer_notes", sa.Text(), nullable=True),
        sa.Column("shop_notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_items", schema=None) as batch_op:
        batch_op.create_index("ix_order_items_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_order_items_product_id", ["product_id"], unique=False)

    op.create_table(
        "order_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("shop_id", sa.Integer(), nullable=False),
        sa.Column("date_key", sa.String(6), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("shop_id", "date_key", name="uq_order_sequences_shop_date"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_sequences", schema=None) as batch_op:
        batch_op.create_index("ix_order_sequences_shop_id", ["shop_id"], unique=False)

    op.create_table(
        "order_status_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("from_status", sa.String(16), nullable=True),
        sa.Column("to_status", sa.String(16), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id", "seq", name="uq_order_status_history_order_seq"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_status_history", schema=None) as batch_op:
        batch_op.create_index("ix_order_status_history_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_order_status_history_actor_user_id", ["actor_user_id"], unique=False)
        batch_op.create_index("ix_order_status_history_occurred_at", ["occurred_at"], unique=False)

    op.create_table(
        "order_modifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(24), nullable=False),
        sa.Column("field", sa.String(64), nullable=True),
        sa.Column("order_item_id", sa.Integer(), nullable=True),
        sa.Column("old_value", sa.Text(), nullable=True),
        sa.Column("new_value", sa.Text(), nullable=True),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["order_item_id"], ["order_items.id"]),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id", "seq", name="uq_order_modifications_order_seq"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_modifications", schema=None) as batch_op:
        batch_op.create_index("ix_order_modifications_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_order_modifications_kind", ["kind"], unique=False)
        batch_op.create_index("ix_order_modifications_order_item_id", ["order_item_id"], unique=False)
        batch_op.create_index("ix_order_modifications_actor_user_id", ["actor_user_id"], unique=False)
        batch_op.create_index("ix_order_modifications_occurred_at", ["occurred_at"], unique=False)

    op.create_table(
        "order_item_modifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_item_id", sa.Integer(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(24), nullable=False),
        sa.Column("old_value", sa.Text(), nullable=True),
        sa.Column("new_value", sa.Text(), nullable=True),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["order_item_id"], ["order_items.id"]),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_item_id", "seq", name="uq_order_item_modifications_item_seq"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_item_modifications", schema=None) as batch_op:
        batch_op.create_index("ix_order_item_modifications_order_item_id", ["order_item_id"], unique=False)
        batch_op.create_index("ix_order_item_modifications_actor_user_id", ["actor_user_id"], unique=False)

    op.create_table(
        "credit_accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("shop_id", sa.Integer(), nullable=False),
        sa.Column("customer_phone", sa.String(20), nullable=False),
        sa.Column("customer_nickname", sa.String(100), nullable=True),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("total_credit_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_paid_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("current_balance_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("credit_limit_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(16), nullable=False, server_default="ACTIVE"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("last_credit_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_payment_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("shop_id", "customer_phone", name="uq_credit_accounts_shop_phone"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("credit_accounts", schema=None) as batch_op:
        batch_op.create_index("ix_credit_accounts_shop_id", ["shop_id"], unique=False)
        batch_op.create_index("ix_credit_accounts_customer_phone", ["customer_phone"], unique=False)
        batch_op.create_index("ix_credit_accounts_status", ["status"], unique=False)
        batch_op.create_index("ix_credit_accounts_shop_status", ["shop_id", "status"], unique=False)

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("credit_account_id", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(16), nullable=False),
        sa.Column("transaction_source", sa.String(16), nullable=False, server_default="MANUAL"),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("balance_after_cents", sa.Integer(), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["credit_account_id"], ["credit_accounts.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id", name="uq_credit_transactions_order"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("credit_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_credit_transactions_credit_account_id", ["credit_account_id"], unique=False)
        batch_op.create_index("ix_credit_transactions_transaction_type", ["transaction_type"], unique=False)
        batch_op.create_index("ix_credit_transactions_created_by_user_id", ["created_by_user_id"], unique=False)
        batch_op.create_index("ix_credit_transactions_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_credit_transactions_account_created", ["credit_account_id", "created_at"], unique=False)


def downgrade():
    for table in (
        "credit_transactions",
        "credit_accounts",
        "order_item_modifications",
        "order_modifications",
        "order_status_history",
        "order_sequences",
        "order_items",
        "orders",
        "cart_items",
    ):
        op.drop_table(table)
    op.drop_index("uq_carts_active_user_shop", table_name="carts")
    for table in ("carts", "session_tokens", "products", "shops", "users"):
        op.drop_table(table)
