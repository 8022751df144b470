"""
Relational layout of the collections in ``schemas``.

Column names match the pydantic field names one to one, so a row mapping
validates straight into its model. Defaults and foreign keys live here; the
relational backend relies on them instead of applying anything in code.
"""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB

from schemas import utc_now

metadata = MetaData()

Json = JSON().with_variant(JSONB(), "postgresql")


def _new_id() -> str:
    return str(uuid.uuid4())


def _id():
    return Column("id", String(36), primary_key=True, default=_new_id)


def _created_at():
    return Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now())


def _money(name, **kw):
    return Column(name, Numeric(10, 2, asdecimal=True), **kw)


def _ref(name, target, nullable=False):
    return Column(name, String(36), ForeignKey(f"{target}.id"), nullable=nullable, index=True)


users = Table(
    "users",
    metadata,
    _id(),
    Column("email", Text, nullable=False, unique=True),
    Column("password", Text, nullable=False),
    Column("business_name", Text),
    Column("logo_url", Text),
    Column("primary_color", Text, default="#2563eb"),
    Column("facebook_pixel_id", Text),
    Column("facebook_access_token", Text),
    Column("uddoktapay_api_key", Text),
    Column("uddoktapay_api_url", Text),
    Column("sendgrid_api_key", Text),
    Column("from_email", Text),
    Column("custom_domain", Text),
    Column("domain_verified", Boolean, default=False),
)

products = Table(
    "products",
    metadata,
    _id(),
    _ref("user_id", "users"),
    Column("name", Text, nullable=False),
    Column("description", Text),
    _money("price", nullable=False),
    _money("compare_at_price"),
    Column("image_url", Text),
    Column("file_url", Text),
    Column("file_name", Text),
    Column("file_size", Integer),
    Column("download_limit", Integer, default=5),
    Column("is_active", Boolean, default=True),
    _created_at(),
)

checkout_pages = Table(
    "checkout_pages",
    metadata,
    _id(),
    _ref("user_id", "users"),
    _ref("product_id", "products"),
    Column("name", Text, nullable=False),
    Column("slug", Text, nullable=False, unique=True),
    Column("template", Text, default="publisher"),
    Column("blocks", Json, default=lambda: []),
    Column("custom_styles", Json, default=lambda: {}),
    Column("is_published", Boolean, default=False),
    _created_at(),
)


def _offer_table(name):
    return Table(
        name,
        metadata,
        _id(),
        _ref("checkout_page_id", "checkout_pages"),
        _ref("product_id", "products"),
        Column("headline", Text, nullable=False),
        Column("description", Text),
        Column("discount_type", Text, default="fixed"),
        _money("discount_value", default=0),
        Column("position", Integer, default=0),
        Column("is_active", Boolean, default=True),
        _created_at(),
    )


order_bumps = _offer_table("order_bumps")
upsells = _offer_table("upsells")

coupons = Table(
    "coupons",
    metadata,
    _id(),
    _ref("user_id", "users"),
    Column("code", Text, nullable=False),
    Column("discount_type", Text, nullable=False),
    _money("discount_value", nullable=False),
    Column("usage_limit", Integer),
    Column("used_count", Integer, default=0),
    Column("expires_at", DateTime(timezone=True)),
    Column("is_active", Boolean, default=True),
    _created_at(),
    UniqueConstraint("user_id", "code", name="uq_coupons_user_code"),
)

customers = Table(
    "customers",
    metadata,
    _id(),
    _ref("user_id", "users"),
    Column("email", Text, nullable=False),
    Column("first_name", Text),
    Column("last_name", Text),
    Column("phone", Text),
    Column("country", Text),
    _created_at(),
    UniqueConstraint("user_id", "email", name="uq_customers_user_email"),
)

orders = Table(
    "orders",
    metadata,
    _id(),
    _ref("user_id", "users"),
    _ref("customer_id", "customers"),
    _ref("checkout_page_id", "checkout_pages", nullable=True),
    _ref("coupon_id", "coupons", nullable=True),
    Column("status", Text, default="pending"),
    _money("subtotal", nullable=False),
    _money("discount", default=0),
    _money("total", nullable=False),
    Column("payment_method", Text),
    Column("transaction_id", Text),
    Column("invoice_id", Text),
    Column("event_id", Text),
    Column("ip_address", Text),
    Column("user_agent", Text),
    _created_at(),
)

order_items = Table(
    "order_items",
    metadata,
    _id(),
    _ref("order_id", "orders"),
    _ref("product_id", "products"),
    Column("item_type", Text, default="main"),
    _money("price", nullable=False),
    Column("download_count", Integer, default=0),
    Column("download_token", Text),
    Column("token_expires_at", DateTime(timezone=True)),
    _created_at(),
)

abandoned_carts = Table(
    "abandoned_carts",
    metadata,
    _id(),
    _ref("user_id", "users"),
    _ref("checkout_page_id", "checkout_pages"),
    Column("email", Text),
    Column("cart_data", Json),
    Column("ip_address", Text),
    Column("user_agent", Text),
    Column("recovery_email_sent", Boolean, default=False),
    Column("recovered_at", DateTime(timezone=True)),
    _created_at(),
)

email_templates = Table(
    "email_templates",
    metadata,
    _id(),
    _ref("user_id", "users"),
    Column("type", Text, nullable=False),
    Column("subject", Text, nullable=False),
    Column("body", Text, nullable=False),
    Column("is_active", Boolean, default=True),
    _created_at(),
)

pixel_events = Table(
    "pixel_events",
    metadata,
    _id(),
    _ref("user_id", "users"),
    Column("event_name", Text, nullable=False),
    Column("event_id", Text, nullable=False),
    Column("event_time", DateTime(timezone=True), nullable=False),
    Column("user_data", Json),
    Column("custom_data", Json),
    Column("action_source", Text, default="website"),
    Column("sent_to_server", Boolean, default=False),
    _created_at(),
)
