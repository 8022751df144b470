"""
Database Schemas for the checkout back-office (digital goods storefronts)

Each Pydantic model represents one stored collection / table. The collection
name is the snake_case plural used by both backends (e.g. CheckoutPage ->
"checkout_pages"), so a Mongo collection and its SQL table share one name.

Ownership model: every store operator is a User. All seller data (products,
checkout pages, coupons, customers, orders, ...) carries a user_id so the data
can be listed and isolated per owner.

Input models (``*Create``) leave schema-defaulted fields as ``None``; the
backend that persists them is responsible for applying the defaults.
"""

import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from functools import lru_cache
from typing import Annotated, Any, Dict, List, Literal, Optional, Type

from pydantic import AfterValidator, BaseModel, Field, TypeAdapter

CENT = Decimal("0.01")


def _two_places(value: Decimal) -> Decimal:
    return value.quantize(CENT)


def to_millis(value: datetime) -> datetime:
    """Aware UTC, truncated to the millisecond precision BSON dates carry."""
    # stores hand naive datetimes back; they are always written as UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


Money = Annotated[Decimal, AfterValidator(_two_places)]
UtcDatetime = Annotated[datetime, AfterValidator(to_millis)]

DiscountType = Literal["fixed", "percentage"]
OrderStatus = Literal["pending", "completed", "failed", "refunded"]
ItemType = Literal["main", "bump", "upsell"]
PageTemplate = Literal["publisher", "author", "clean", "minimalist"]
TemplateType = Literal["purchase_confirmation", "digital_delivery", "cart_abandonment", "upsell"]
BlockType = Literal[
    "hero",
    "text",
    "heading",
    "image",
    "button",
    "pricing",
    "testimonial",
    "countdown",
    "divider",
    "spacer",
    "features",
    "guarantee",
    "orderBump",
    "paymentForm",
]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CreationClock:
    """
    ``created_at`` stamps for one backend: millisecond precision, strictly
    increasing. Two rows created within the same millisecond get stamps one
    millisecond apart, so newest-first is a total order on either store.
    """

    def __init__(self, clock=utc_now):
        self._clock = clock
        self._last: Optional[datetime] = None
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            now = to_millis(self._clock())
            if self._last is not None and now <= self._last:
                now = self._last + timedelta(milliseconds=1)
            self._last = now
            return now


# ============ Users ============
class UserCreate(BaseModel):
    """
    Store operators
    Collection: "users"
    """
    email: str = Field(..., description="Unique login email")
    password: str = Field(..., description="Opaque credential")
    business_name: Optional[str] = None
    logo_url: Optional[str] = None
    primary_color: Optional[str] = Field(None, description="Checkout theme color, defaults to #2563eb")
    facebook_pixel_id: Optional[str] = None
    facebook_access_token: Optional[str] = None
    uddoktapay_api_key: Optional[str] = None
    uddoktapay_api_url: Optional[str] = None
    sendgrid_api_key: Optional[str] = None
    from_email: Optional[str] = None
    custom_domain: Optional[str] = None
    domain_verified: Optional[bool] = None


class User(UserCreate):
    id: str


# ============ Products ============
class ProductCreate(BaseModel):
    """
    Digital products (ebooks, bundles, templates)
    Collection: "products"
    """
    user_id: str = Field(..., description="Owning user id")
    name: str = Field(..., description="Product name")
    description: Optional[str] = None
    price: Money = Field(..., ge=0, description="Unit price")
    compare_at_price: Optional[Money] = Field(None, ge=0, description="Strike-through price")
    image_url: Optional[str] = None
    file_url: Optional[str] = Field(None, description="Download location of the delivered file")
    file_name: Optional[str] = None
    file_size: Optional[int] = Field(None, ge=0, description="File size in bytes")
    download_limit: Optional[int] = Field(None, ge=0, description="Downloads allowed per purchase, defaults to 5")
    is_active: Optional[bool] = None


class Product(ProductCreate):
    id: str
    created_at: Optional[UtcDatetime] = None


# ============ Checkout Pages ============
class Block(BaseModel):
    """A positioned content unit of the visual page editor"""
    id: str
    type: BlockType
    content: Dict[str, Any] = Field(default_factory=dict)
    styles: Optional[Dict[str, Any]] = None
    position: int


class CheckoutPageCreate(BaseModel):
    """
    Customizable checkout pages, publicly reachable by slug
    Collection: "checkout_pages"
    """
    user_id: str = Field(..., description="Owning user id")
    product_id: str = Field(..., description="Main product sold on this page")
    name: str
    slug: str = Field(..., description="Globally unique public slug")
    template: Optional[PageTemplate] = None
    blocks: Optional[List[Block]] = None
    custom_styles: Optional[Dict[str, Any]] = None
    is_published: Optional[bool] = None


class CheckoutPage(CheckoutPageCreate):
    id: str
    created_at: Optional[UtcDatetime] = None


class CheckoutPageWithProduct(CheckoutPage):
    product: Optional[Product] = None


# ============ Order Bumps / Upsells ============
class OfferCreate(BaseModel):
    checkout_page_id: str = Field(..., description="Checkout page the offer is shown on")
    product_id: str = Field(..., description="Offered product")
    headline: str
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Money] = Field(None, ge=0)
    position: Optional[int] = Field(None, description="Display order, lowest first")
    is_active: Optional[bool] = None


class OrderBumpCreate(OfferCreate):
    """
    Complementary offers shown during checkout
    Collection: "order_bumps"
    """


class OrderBump(OrderBumpCreate):
    id: str
    created_at: Optional[UtcDatetime] = None


class UpsellCreate(OfferCreate):
    """
    Post-purchase offers
    Collection: "upsells"
    """


class Upsell(UpsellCreate):
    id: str
    created_at: Optional[UtcDatetime] = None


# ============ Coupons ============
class CouponCreate(BaseModel):
    """
    Discount codes; a code is unique per owner only
    Collection: "coupons"
    """
    user_id: str = Field(..., description="Owning user id")
    code: str = Field(..., description="Human-entered code")
    discount_type: DiscountType
    discount_value: Money = Field(..., ge=0)
    usage_limit: Optional[int] = Field(None, ge=0, description="Maximum redemptions, unlimited when unset")
    expires_at: Optional[UtcDatetime] = None
    is_active: Optional[bool] = None


class Coupon(CouponCreate):
    id: str
    used_count: int = Field(0, ge=0)
    created_at: Optional[UtcDatetime] = None


# ============ Customers ============
class CustomerCreate(BaseModel):
    """
    Buyers; email is unique per owner
    Collection: "customers"
    """
    user_id: str = Field(..., description="Owning user id")
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    country: Optional[str] = None


class Customer(CustomerCreate):
    id: str
    created_at: Optional[UtcDatetime] = None


# ============ Orders ============
class OrderCreate(BaseModel):
    """
    Purchases
    Collection: "orders"
    """
    user_id: str = Field(..., description="Owning user id")
    customer_id: str
    checkout_page_id: Optional[str] = None
    coupon_id: Optional[str] = None
    status: Optional[OrderStatus] = None
    subtotal: Money = Field(..., ge=0)
    discount: Optional[Money] = Field(None, ge=0)
    total: Money = Field(..., ge=0)
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    invoice_id: Optional[str] = None
    event_id: Optional[str] = Field(None, description="Conversion dedup id shared with the pixel event")
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class Order(OrderCreate):
    id: str
    created_at: Optional[UtcDatetime] = None


class OrderItemCreate(BaseModel):
    """
    Products purchased within an order; price is a snapshot taken at purchase
    Collection: "order_items"
    """
    order_id: str
    product_id: str
    item_type: Optional[ItemType] = None
    price: Money = Field(..., ge=0)
    download_count: Optional[int] = Field(None, ge=0)
    download_token: Optional[str] = None
    token_expires_at: Optional[UtcDatetime] = None


class OrderItem(OrderItemCreate):
    id: str
    created_at: Optional[UtcDatetime] = None


class OrderItemWithProduct(OrderItem):
    product: Optional[Product] = None


class OrderWithDetails(Order):
    customer: Optional[Customer] = None
    items: List[OrderItem] = Field(default_factory=list)


class OrderDetail(Order):
    customer: Optional[Customer] = None
    items: List[OrderItemWithProduct] = Field(default_factory=list)


# ============ Abandoned Carts ============
class AbandonedCartCreate(BaseModel):
    """
    Checkouts started but not paid
    Collection: "abandoned_carts"
    """
    user_id: str = Field(..., description="Owning user id")
    checkout_page_id: str
    email: Optional[str] = None
    cart_data: Optional[Dict[str, Any]] = Field(None, description="Serialized cart payload")
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    recovery_email_sent: Optional[bool] = None
    recovered_at: Optional[UtcDatetime] = None


class AbandonedCart(AbandonedCartCreate):
    id: str
    created_at: Optional[UtcDatetime] = None


# ============ Email Templates ============
class EmailTemplateCreate(BaseModel):
    """
    Transactional email templates with {{placeholder}} variables
    Collection: "email_templates"
    """
    user_id: str = Field(..., description="Owning user id")
    type: TemplateType
    subject: str
    body: str
    is_active: Optional[bool] = None


class EmailTemplate(EmailTemplateCreate):
    id: str
    created_at: Optional[UtcDatetime] = None


# ============ Pixel Events ============
class PixelEventCreate(BaseModel):
    """
    Conversion events reported to the ad pixel
    Collection: "pixel_events"
    """
    user_id: str = Field(..., description="Owning user id")
    event_name: str
    event_id: str = Field(..., description="Dedup key shared with the browser pixel")
    event_time: UtcDatetime
    user_data: Optional[Dict[str, Any]] = None
    custom_data: Optional[Dict[str, Any]] = None
    action_source: Optional[str] = None
    sent_to_server: Optional[bool] = None


class PixelEvent(PixelEventCreate):
    id: str
    created_at: Optional[UtcDatetime] = None


MODELS: Dict[str, Type[BaseModel]] = {
    "users": User,
    "products": Product,
    "checkout_pages": CheckoutPage,
    "order_bumps": OrderBump,
    "upsells": Upsell,
    "coupons": Coupon,
    "customers": Customer,
    "orders": Order,
    "order_items": OrderItem,
    "abandoned_carts": AbandonedCart,
    "email_templates": EmailTemplate,
    "pixel_events": PixelEvent,
}

# field -> referenced collection, per collection
REFERENCES: Dict[str, Dict[str, str]] = {
    "products": {"user_id": "users"},
    "checkout_pages": {"user_id": "users", "product_id": "products"},
    "order_bumps": {"checkout_page_id": "checkout_pages", "product_id": "products"},
    "upsells": {"checkout_page_id": "checkout_pages", "product_id": "products"},
    "coupons": {"user_id": "users"},
    "customers": {"user_id": "users"},
    "orders": {
        "user_id": "users",
        "customer_id": "customers",
        "checkout_page_id": "checkout_pages",
        "coupon_id": "coupons",
    },
    "order_items": {"order_id": "orders", "product_id": "products"},
    "abandoned_carts": {"user_id": "users", "checkout_page_id": "checkout_pages"},
    "email_templates": {"user_id": "users"},
    "pixel_events": {"user_id": "users"},
}


def referenced_by(collection: str) -> List[tuple]:
    """(collection, field) pairs whose rows point at ``collection``."""
    return [
        (source, field)
        for source, fields in REFERENCES.items()
        for field, target in fields.items()
        if target == collection
    ]


READ_ONLY_FIELDS = ("id", "created_at")


@lru_cache(maxsize=None)
def field_adapter(model: Type[BaseModel], name: str) -> TypeAdapter:
    field = model.model_fields[name]
    annotation = Annotated[(field.annotation, *field.metadata)] if field.metadata else field.annotation
    return TypeAdapter(annotation)


def validate_changes(model: Type[BaseModel], data: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a partial update against ``model`` field by field.

    Returns plain python values ready to be written. Unknown and read-only
    fields are rejected rather than dropped.
    """
    rejected = sorted(k for k in data if k not in model.model_fields or k in READ_ONLY_FIELDS)
    if rejected:
        raise ValueError(f"Cannot update {model.__name__} field(s): {', '.join(rejected)}")
    changes = {}
    for key, value in data.items():
        adapter = field_adapter(model, key)
        changes[key] = adapter.dump_python(adapter.validate_python(value))
    return changes


# Note for the platform:
# 1) Both storage backends read and write rows shaped exactly like these models
# 2) Collection names are shared by the Mongo collections and the SQL tables
# 3) REFERENCES is the single source of the foreign keys both backends enforce
