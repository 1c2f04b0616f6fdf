"""Initial pharmadist schema

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_initial"
down_revision = None
branch_labels = None
depends_on = None

# Decimal quantities and money are stored as plain strings
QTY = sa.String(64)
NOW = sa.text("(CURRENT_TIMESTAMP)")


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False)


def _updated_at():
    return sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False)


def _version():
    return sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1"))


def _tenant_fk():
    return sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"])


def upgrade():
    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(32), nullable=True),
        sa.Column("country", sa.String(2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_tenants_code", "tenants", ["code"], unique=True)
    op.create_index("ix_tenants_is_active", "tenants", ["is_active"])

    op.create_table(
        "tenant_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("key", sa.String(16), nullable=False),
        sa.Column("current_value", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _updated_at(),
        _tenant_fk(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "year", "key", name="uq_tenant_sequences_tenant_year_key"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_tenant_sequences_tenant_id", "tenant_sequences", ["tenant_id"])

    op.create_table(
        "warehouses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("city", sa.String(80), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        _tenant_fk(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_warehouses_tenant_code"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_warehouses_tenant_id", "warehouses", ["tenant_id"])
    op.create_index("ix_warehouses_tenant_city", "warehouses", ["tenant_id", "city"])

    op.create_table(
        "locations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("warehouse_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["warehouse_id"], ["warehouses.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "warehouse_id", "code", name="uq_locations_warehouse_code"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_locations_tenant_id", "locations", ["tenant_id"])
    op.create_index("ix_locations_warehouse_id", "locations", ["warehouse_id"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("role", sa.String(32), nullable=False, server_default="SELLER"),
        sa.Column("warehouse_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["warehouse_id"], ["warehouses.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_users_tenant_id", "users", ["tenant_id"])

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(255), nullable=False),
        _created_at(),
        sa.Column("last_used_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_session_tokens_token_hash", "session_tokens", ["token_hash"], unique=True)
    op.create_index("ix_session_tokens_user_id", "session_tokens", ["user_id"])
    op.create_index("ix_session_tokens_tenant_id", "session_tokens", ["tenant_id"])
    op.create_index("ix_session_tokens_expires_at", "session_tokens", ["expires_at"])
    op.create_index("ix_session_tokens_is_revoked", "session_tokens", ["is_revoked"])
    op.create_index("ix_session_tokens_user_active", "session_tokens", ["user_id", "is_revoked"])

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("generic_name", sa.String(255), nullable=True),
        sa.Column("price", QTY, nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _version(),
        _created_at(),
        _updated_at(),
        _tenant_fk(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "sku", name="uq_products_tenant_sku"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_products_tenant_id", "products", ["tenant_id"])
    op.create_index("ix_products_tenant_active", "products", ["tenant_id", "is_active"])

    op.create_table(
        "product_presentations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(80), nullable=False),
        sa.Column("units_per_presentation", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("price_override", QTY, nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _version(),
        _created_at(),
        _updated_at(),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "product_id", "name", name="uq_presentations_product_name"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_product_presentations_tenant_id", "product_presentations", ["tenant_id"])
    op.create_index("ix_product_presentations_product_id", "product_presentations", ["product_id"])
    # At most one default per product
    op.create_index(
        "uq_presentations_product_default",
        "product_presentations",
        ["product_id"],
        unique=True,
        sqlite_where=sa.text("is_default = 1"),
        postgresql_where=sa.text("is_default"),
    )

    op.create_table(
        "batches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("batch_number", sa.String(80), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="RELEASED"),
        sa.Column("expires_at", sa.Date(), nullable=True),
        sa.Column("manufacturing_date", sa.Date(), nullable=True),
        _version(),
        _created_at(),
        _updated_at(),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "product_id", "batch_number", name="uq_batches_product_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_batches_tenant_id", "batches", ["tenant_id"])
    op.create_index("ix_batches_product_id", "batches", ["product_id"])
    op.create_index("ix_batches_status", "batches", ["status"])
    op.create_index("ix_batches_product_expiry", "batches", ["product_id", "expires_at"])

    op.create_table(
        "inventory_balances",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("quantity", QTY, nullable=False, server_default="0"),
        sa.Column("reserved_quantity", QTY, nullable=False, server_default="0"),
        _version(),
        _created_at(),
        _updated_at(),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["batch_id"], ["batches.id"]),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "product_id", "batch_id", "location_id", name="uq_inventory_balances_key"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_inventory_balances_tenant_id", "inventory_balances", ["tenant_id"])
    op.create_index("ix_inventory_balances_product_id", "inventory_balances", ["product_id"])
    op.create_index("ix_inventory_balances_batch_id", "inventory_balances", ["batch_id"])
    op.create_index("ix_inventory_balances_location_id", "inventory_balances", ["location_id"])
    op.create_index("ix_inventory_balances_product_location", "inventory_balances", ["product_id", "location_id"])

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("number", sa.String(32), nullable=False),
        sa.Column("number_year", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        sa.Column("from_location_id", sa.Integer(), nullable=True),
        sa.Column("to_location_id", sa.Integer(), nullable=True),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("presentation_id", sa.Integer(), nullable=True),
        sa.Column("presentation_quantity", QTY, nullable=True),
        sa.Column("reference_type", sa.String(50), nullable=True),
        sa.Column("reference_id", sa.String(80), nullable=True),
        sa.Column("note", sa.String(500), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        _created_at(),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["batch_id"], ["batches.id"]),
        sa.ForeignKeyConstraint(["from_location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["to_location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["presentation_id"], ["product_presentations.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "number", name="uq_stock_movements_tenant_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_movements_tenant_id", "stock_movements", ["tenant_id"])
    op.create_index("ix_stock_movements_type", "stock_movements", ["type"])
    op.create_index("ix_stock_movements_product_id", "stock_movements", ["product_id"])
    op.create_index("ix_stock_movements_reference", "stock_movements", ["reference_type", "reference_id"])

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("business_name", sa.String(255), nullable=True),
        sa.Column("city", sa.String(80), nullable=True),
        sa.Column("address", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        _tenant_fk(),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_customers_tenant_id", "customers", ["tenant_id"])
    op.create_index("ix_customers_tenant_name", "customers", ["tenant_id", "name"])

    op.create_table(
        "quotes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("number", sa.String(32), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="CREATED"),
        sa.Column("validity_days", sa.Integer(), nullable=False, server_default=sa.text("7")),
        sa.Column("payment_mode", sa.String(50), nullable=False, server_default="CASH"),
        sa.Column("delivery_days", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("delivery_city", sa.String(80), nullable=True),
        sa.Column("delivery_address", sa.String(255), nullable=True),
        sa.Column("global_discount_pct", QTY, nullable=False, server_default="0"),
        sa.Column("proposal_value", sa.String(200), nullable=True),
        sa.Column("note", sa.String(500), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        _version(),
        _created_at(),
        _updated_at(),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "number", name="uq_quotes_tenant_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_quotes_tenant_id", "quotes", ["tenant_id"])
    op.create_index("ix_quotes_customer_id", "quotes", ["customer_id"])
    op.create_index("ix_quotes_status", "quotes", ["status"])

    op.create_table(
        "quote_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("quote_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("presentation_id", sa.Integer(), nullable=True),
        sa.Column("presentation_quantity", QTY, nullable=True),
        sa.Column("unit_price", QTY, nullable=False),
        sa.Column("discount_pct", QTY, nullable=False, server_default="0"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["quote_id"], ["quotes.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["presentation_id"], ["product_presentations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_quote_lines_tenant_id", "quote_lines", ["tenant_id"])
    op.create_index("ix_quote_lines_quote_id", "quote_lines", ["quote_id"])
    op.create_index("ix_quote_lines_product_id", "quote_lines", ["product_id"])

    op.create_table(
        "sales_orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("number", sa.String(32), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("quote_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="CONFIRMED"),
        sa.Column("city", sa.String(80), nullable=True),
        sa.Column("delivery_date", sa.Date(), nullable=True),
        sa.Column("delivery_address", sa.String(255), nullable=True),
        sa.Column("note", sa.String(500), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        _version(),
        _created_at(),
        _updated_at(),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["quote_id"], ["quotes.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "number", name="uq_sales_orders_tenant_number"),
        sa.UniqueConstraint("tenant_id", "quote_id", name="uq_sales_orders_tenant_quote"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sales_orders_tenant_id", "sales_orders", ["tenant_id"])
    op.create_index("ix_sales_orders_customer_id", "sales_orders", ["customer_id"])
    op.create_index("ix_sales_orders_quote_id", "sales_orders", ["quote_id"])
    op.create_index("ix_sales_orders_status", "sales_orders", ["status"])

    op.create_table(
        "sales_order_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("sales_order_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("presentation_id", sa.Integer(), nullable=True),
        sa.Column("presentation_quantity", QTY, nullable=True),
        sa.Column("unit_price", QTY, nullable=False),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["sales_order_id"], ["sales_orders.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["batch_id"], ["batches.id"]),
        sa.ForeignKeyConstraint(["presentation_id"], ["product_presentations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sales_order_lines_tenant_id", "sales_order_lines", ["tenant_id"])
    op.create_index("ix_sales_order_lines_sales_order_id", "sales_order_lines", ["sales_order_id"])
    op.create_index("ix_sales_order_lines_product_id", "sales_order_lines", ["product_id"])

    op.create_table(
        "sales_order_reservations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("sales_order_id", sa.Integer(), nullable=False),
        sa.Column("sales_order_line_id", sa.Integer(), nullable=False),
        sa.Column("inventory_balance_id", sa.Integer(), nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["sales_order_id"], ["sales_orders.id"]),
        sa.ForeignKeyConstraint(["sales_order_line_id"], ["sales_order_lines.id"]),
        sa.ForeignKeyConstraint(["inventory_balance_id"], ["inventory_balances.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sales_order_reservations_tenant_id", "sales_order_reservations", ["tenant_id"])
    op.create_index("ix_sales_order_reservations_sales_order_id", "sales_order_reservations", ["sales_order_id"])
    op.create_index("ix_sales_order_reservations_sales_order_line_id", "sales_order_reservations", ["sales_order_line_id"])
    op.create_index("ix_sales_order_reservations_inventory_balance_id", "sales_order_reservations", ["inventory_balance_id"])
    op.create_index("ix_reservations_order_line", "sales_order_reservations", ["sales_order_id", "sales_order_line_id"])

    op.create_table(
        "stock_movement_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="OPEN"),
        sa.Column("requested_city", sa.String(80), nullable=False),
        sa.Column("warehouse_id", sa.Integer(), nullable=True),
        sa.Column("quote_id", sa.Integer(), nullable=True),
        sa.Column("requested_by", sa.String(255), nullable=True),
        sa.Column("note", sa.String(500), nullable=True),
        sa.Column("fulfilled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("fulfilled_by_user_id", sa.Integer(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        _version(),
        _created_at(),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["warehouse_id"], ["warehouses.id"]),
        sa.ForeignKeyConstraint(["quote_id"], ["quotes.id"]),
        sa.ForeignKeyConstraint(["fulfilled_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_movement_requests_tenant_id", "stock_movement_requests", ["tenant_id"])
    op.create_index("ix_stock_movement_requests_status", "stock_movement_requests", ["status"])
    op.create_index("ix_stock_movement_requests_quote_id", "stock_movement_requests", ["quote_id"])
    op.create_index(
        "ix_movement_requests_tenant_city_status",
        "stock_movement_requests",
        ["tenant_id", "requested_city", "status"],
    )

    op.create_table(
        "stock_movement_request_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("request_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("requested_quantity", QTY, nullable=False),
        sa.Column("remaining_quantity", QTY, nullable=False),
        sa.Column("presentation_id", sa.Integer(), nullable=True),
        sa.Column("presentation_quantity", QTY, nullable=True),
        _created_at(),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["request_id"], ["stock_movement_requests.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["presentation_id"], ["product_presentations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_movement_request_items_tenant_id", "stock_movement_request_items", ["tenant_id"])
    op.create_index("ix_stock_movement_request_items_request_id", "stock_movement_request_items", ["request_id"])
    op.create_index("ix_stock_movement_request_items_product_id", "stock_movement_request_items", ["product_id"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.String(80), nullable=True),
        sa.Column("before", sa.JSON(), nullable=True),
        sa.Column("after", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        _created_at(),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_audit_events_tenant_id", "audit_events", ["tenant_id"])
    op.create_index("ix_audit_events_actor_user_id", "audit_events", ["actor_user_id"])
    op.create_index("ix_audit_events_action", "audit_events", ["action"])
    op.create_index("ix_audit_events_tenant_entity", "audit_events", ["tenant_id", "entity_type", "entity_id"])
    op.create_index("ix_audit_events_tenant_created", "audit_events", ["tenant_id", "created_at"])


def downgrade():
    for table in (
        "audit_events",
        "stock_movement_request_items",
        "stock_movement_requests",
        "sales_order_reservations",
        "sales_order_lines",
        "sales_orders",
        "quote_lines",
        "quotes",
        "customers",
        "stock_movements",
        "inventory_balances",
        "batches",
        "product_presentations",
        "products",
        "session_tokens",
        "users",
        "locations",
        "warehouses",
        "tenant_sequences",
        "tenants",
    ):
        op.drop_table(table)
