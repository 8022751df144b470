"""
The storage contract every route handler talks to.

``Storage`` holds one backend (relational or document) and implements each
entity operation once against the backend primitives:

    get / find_one / find / insert / update / delete

Absence is a value: single lookups return ``None``, listings return ``[]``.
Composite fetches (checkout page + product, order + customer + items) issue
one follow-up lookup per related row, in sequence, on both backends.
"""

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel

from config import BackendKind, Settings
from database import create_mongo_database, create_sql_engine
from mongo_backend import DocumentBackend
from schemas import (
    MODELS,
    AbandonedCart,
    AbandonedCartCreate,
    CheckoutPage,
    CheckoutPageCreate,
    CheckoutPageWithProduct,
    Coupon,
    CouponCreate,
    Customer,
    CustomerCreate,
    EmailTemplate,
    EmailTemplateCreate,
    Order,
    OrderBump,
    OrderBumpCreate,
    OrderCreate,
    OrderDetail,
    OrderItem,
    OrderItemCreate,
    OrderItemWithProduct,
    OrderWithDetails,
    PixelEvent,
    PixelEventCreate,
    Product,
    ProductCreate,
    Upsell,
    UpsellCreate,
    User,
    UserCreate,
    utc_now,
    validate_changes,
)
from sql_backend import RelationalBackend

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)
Payload = Union[BaseModel, Mapping[str, Any]]

NEWEST_FIRST = (("created_at", True),)
OLDEST_FIRST = (("created_at", False),)
DISPLAY_ORDER = (("position", False), ("created_at", False))


class Storage:
    def __init__(self, backend):
        self.backend = backend

    @property
    def kind(self) -> BackendKind:
        return self.backend.kind

    async def provision(self) -> None:
        await self.backend.provision()

    async def describe(self) -> Dict[str, Any]:
        return await self.backend.describe()

    def close(self) -> None:
        self.backend.close()

    # ============ generic helpers ============
    async def _get(self, collection: str, id: str, model: Optional[Type[M]] = None) -> Optional[M]:
        row = await self.backend.get(collection, id)
        return (model or MODELS[collection]).model_validate(row) if row is not None else None

    async def _find_one(self, collection: str, **filters) -> Optional[BaseModel]:
        row = await self.backend.find_one(collection, filters)
        return MODELS[collection].model_validate(row) if row is not None else None

    async def _list(self, collection: str, filters: Dict[str, Any], sort=NEWEST_FIRST, limit=None) -> List[Any]:
        rows = await self.backend.find(collection, filters, sort, limit)
        model = MODELS[collection]
        return [model.model_validate(row) for row in rows]

    async def _create(self, collection: str, schema: Type[BaseModel], payload: Payload) -> Any:
        # read models subclass their input model; only input fields are inserted
        if type(payload) is not schema:
            payload = schema.model_validate(payload if isinstance(payload, Mapping) else payload.model_dump())
        row = await self.backend.insert(collection, payload.model_dump(exclude_none=True))
        return MODELS[collection].model_validate(row)

    async def _update(self, collection: str, id: str, data: Payload) -> Optional[Any]:
        if isinstance(data, BaseModel):
            data = data.model_dump(exclude_unset=True)
        changes = validate_changes(MODELS[collection], dict(data))
        row = await self.backend.update(collection, id, changes)
        return MODELS[collection].model_validate(row) if row is not None else None

    async def _attach_product(self, model: Type[M], row: BaseModel) -> M:
        product = await self.get_product(row.product_id)
        return model(**row.model_dump(), product=product)

    # ============ Users ============
    async def get_user(self, id: str) -> Optional[User]:
        return await self._get("users", id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        return await self._find_one("users", email=email)

    async def create_user(self, user: Payload) -> User:
        return await self._create("users", UserCreate, user)

    async def update_user(self, id: str, data: Payload) -> Optional[User]:
        return await self._update("users", id, data)

    async def delete_user(self, id: str) -> bool:
        return await self.backend.delete("users", id)

    # ============ Products ============
    async def get_products(self, user_id: str) -> List[Product]:
        return await self._list("products", {"user_id": user_id})

    async def get_product(self, id: str) -> Optional[Product]:
        return await self._get("products", id)

    async def create_product(self, product: Payload) -> Product:
        return await self._create("products", ProductCreate, product)

    async def update_product(self, id: str, data: Payload) -> Optional[Product]:
        return await self._update("products", id, data)

    async def delete_product(self, id: str) -> bool:
        return await self.backend.delete("products", id)

    # ============ Checkout Pages ============
    async def get_checkout_pages(self, user_id: str) -> List[CheckoutPageWithProduct]:
        pages = await self._list("checkout_pages", {"user_id": user_id})
        return [await self._attach_product(CheckoutPageWithProduct, page) for page in pages]

    async def get_checkout_page(self, id: str) -> Optional[CheckoutPageWithProduct]:
        page = await self._get("checkout_pages", id)
        if page is None:
            return None
        return await self._attach_product(CheckoutPageWithProduct, page)

    async def get_checkout_page_by_slug(self, slug: str) -> Optional[CheckoutPageWithProduct]:
        """Public lookup; slugs are unique across all owners."""
        page = await self._find_one("checkout_pages", slug=slug)
        if page is None:
            return None
        return await self._attach_product(CheckoutPageWithProduct, page)

    async def create_checkout_page(self, page: Payload) -> CheckoutPage:
        return await self._create("checkout_pages", CheckoutPageCreate, page)

    async def update_checkout_page(self, id: str, data: Payload) -> Optional[CheckoutPage]:
        return await self._update("checkout_pages", id, data)

    async def delete_checkout_page(self, id: str) -> bool:
        return await self.backend.delete("checkout_pages", id)

    # ============ Order Bumps ============
    async def get_order_bumps(self, checkout_page_id: str) -> List[OrderBump]:
        return await self._list("order_bumps", {"checkout_page_id": checkout_page_id}, DISPLAY_ORDER)

    async def get_order_bump(self, id: str) -> Optional[OrderBump]:
        return await self._get("order_bumps", id)

    async def create_order_bump(self, bump: Payload) -> OrderBump:
        return await self._create("order_bumps", OrderBumpCreate, bump)

    async def update_order_bump(self, id: str, data: Payload) -> Optional[OrderBump]:
        return await self._update("order_bumps", id, data)

    async def delete_order_bump(self, id: str) -> bool:
        return await self.backend.delete("order_bumps", id)

    # ============ Upsells ============
    async def get_upsells(self, checkout_page_id: str) -> List[Upsell]:
        return await self._list("upsells", {"checkout_page_id": checkout_page_id}, DISPLAY_ORDER)

    async def get_upsell(self, id: str) -> Optional[Upsell]:
        return await self._get("upsells", id)

    async def create_upsell(self, upsell: Payload) -> Upsell:
        return await self._create("upsells", UpsellCreate, upsell)

    async def update_upsell(self, id: str, data: Payload) -> Optional[Upsell]:
        return await self._update("upsells", id, data)

    async def delete_upsell(self, id: str) -> bool:
        return await self.backend.delete("upsells", id)

    # ============ Coupons ============
    async def get_coupons(self, user_id: str, active: Optional[bool] = None) -> List[Coupon]:
        filters = {"user_id": user_id}
        if active is not None:
            filters["is_active"] = active
        return await self._list("coupons", filters)

    async def get_coupon(self, id: str) -> Optional[Coupon]:
        return await self._get("coupons", id)

    async def get_coupon_by_code(self, code: str, user_id: str) -> Optional[Coupon]:
        return await self._find_one("coupons", code=code, user_id=user_id)

    async def create_coupon(self, coupon: Payload) -> Coupon:
        """Create a coupon; ``used_count`` always starts at zero."""
        return await self._create("coupons", CouponCreate, coupon)

    async def update_coupon(self, id: str, data: Payload) -> Optional[Coupon]:
        return await self._update("coupons", id, data)

    async def delete_coupon(self, id: str) -> bool:
        return await self.backend.delete("coupons", id)

    # ============ Customers ============
    async def get_customers(self, user_id: str) -> List[Customer]:
        return await self._list("customers", {"user_id": user_id})

    async def get_customer(self, id: str) -> Optional[Customer]:
        return await self._get("customers", id)

    async def get_customer_by_email(self, email: str, user_id: str) -> Optional[Customer]:
        return await self._find_one("customers", email=email, user_id=user_id)

    async def create_customer(self, customer: Payload) -> Customer:
        return await self._create("customers", CustomerCreate, customer)

    async def update_customer(self, id: str, data: Payload) -> Optional[Customer]:
        return await self._update("customers", id, data)

    async def delete_customer(self, id: str) -> bool:
        return await self.backend.delete("customers", id)

    # ============ Orders ============
    async def get_orders(self, user_id: str) -> List[OrderWithDetails]:
        orders = await self._list("orders", {"user_id": user_id})
        results = []
        for order in orders:
            customer = await self.get_customer(order.customer_id)
            items = await self._list("order_items", {"order_id": order.id}, OLDEST_FIRST)
            results.append(OrderWithDetails(**order.model_dump(), customer=customer, items=items))
        return results

    async def get_order(self, id: str) -> Optional[OrderDetail]:
        order = await self._get("orders", id)
        if order is None:
            return None
        customer = await self.get_customer(order.customer_id)
        items = await self.get_order_items(order.id)
        return OrderDetail(**order.model_dump(), customer=customer, items=items)

    async def create_order(self, order: Payload) -> Order:
        return await self._create("orders", OrderCreate, order)

    async def update_order(self, id: str, data: Payload) -> Optional[Order]:
        return await self._update("orders", id, data)

    async def delete_order(self, id: str) -> bool:
        return await self.backend.delete("orders", id)

    # ============ Order Items ============
    async def get_order_items(self, order_id: str) -> List[OrderItemWithProduct]:
        items = await self._list("order_items", {"order_id": order_id}, OLDEST_FIRST)
        return [await self._attach_product(OrderItemWithProduct, item) for item in items]

    async def create_order_item(self, item: Payload) -> OrderItem:
        """The item price is a snapshot and is never recomputed from the product."""
        return await self._create("order_items", OrderItemCreate, item)

    async def update_order_item(self, id: str, data: Payload) -> Optional[OrderItem]:
        return await self._update("order_items", id, data)

    # ============ Abandoned Carts ============
    async def get_abandoned_carts(self, user_id: str) -> List[AbandonedCart]:
        return await self._list("abandoned_carts", {"user_id": user_id})

    async def create_abandoned_cart(self, cart: Payload) -> AbandonedCart:
        return await self._create("abandoned_carts", AbandonedCartCreate, cart)

    async def update_abandoned_cart(self, id: str, data: Payload) -> Optional[AbandonedCart]:
        return await self._update("abandoned_carts", id, data)

    async def delete_abandoned_cart(self, id: str) -> bool:
        return await self.backend.delete("abandoned_carts", id)

    # ============ Email Templates ============
    async def get_email_templates(self, user_id: str) -> List[EmailTemplate]:
        return await self._list("email_templates", {"user_id": user_id})

    async def get_email_template(self, id: str) -> Optional[EmailTemplate]:
        return await self._get("email_templates", id)

    async def create_email_template(self, template: Payload) -> EmailTemplate:
        return await self._create("email_templates", EmailTemplateCreate, template)

    async def update_email_template(self, id: str, data: Payload) -> Optional[EmailTemplate]:
        return await self._update("email_templates", id, data)

    async def delete_email_template(self, id: str) -> bool:
        return await self.backend.delete("email_templates", id)

    # ============ Pixel Events ============
    async def get_pixel_events(self, user_id: str, limit: int = 100) -> List[PixelEvent]:
        return await self._list("pixel_events", {"user_id": user_id}, limit=limit)

    async def create_pixel_event(self, event: Payload) -> PixelEvent:
        return await self._create("pixel_events", PixelEventCreate, event)

    async def update_pixel_event(self, id: str, data: Payload) -> Optional[PixelEvent]:
        return await self._update("pixel_events", id, data)


def create_storage(settings: Settings, clock: Callable = utc_now) -> Storage:
    """Build the one storage instance a process uses."""
    if settings.database_type is BackendKind.DOCUMENT:
        logger.info("Using MongoDB document storage (%s)", settings.database_name)
        db = create_mongo_database(settings.url, settings.database_name)
        return Storage(DocumentBackend(db, clock=clock))

    logger.info("Using relational storage")
    return Storage(RelationalBackend(create_sql_engine(settings.url), clock=clock))
