import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import Settings
from coupons import CouponFailure, CouponRejected, validate_coupon
from errors import DuplicateKey, ReferenceViolation
from schemas import (
    CheckoutPage,
    CheckoutPageCreate,
    CheckoutPageWithProduct,
    Coupon,
    CouponCreate,
    Customer,
    EmailTemplate,
    EmailTemplateCreate,
    OrderDetail,
    OrderWithDetails,
    Product,
    ProductCreate,
)
from storage import Storage, create_storage

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    storage = create_storage(settings)
    await storage.provision()
    app.state.storage = storage
    try:
        yield
    finally:
        storage.close()


app = FastAPI(title="Checkout Builder API", version="0.4.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Helpers
def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def found(item, what: str):
    if item is None:
        raise HTTPException(status_code=404, detail=f"{what} not found")
    return item


@app.exception_handler(ReferenceViolation)
async def reference_violation_handler(request: Request, exc: ReferenceViolation):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(DuplicateKey)
async def duplicate_key_handler(request: Request, exc: DuplicateKey):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(CouponRejected)
async def coupon_rejected_handler(request: Request, exc: CouponRejected):
    status = 404 if exc.reason is CouponFailure.NOT_FOUND else 400
    return JSONResponse(status_code=status, content={"detail": exc.message, "reason": exc.reason.value})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.get("/")
def root():
    return {"name": "Checkout Builder", "status": "ok"}


@app.get("/test")
async def test_database(storage: Storage = Depends(get_storage)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "storage": storage.kind.value,
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        info = await storage.describe()
        response["database"] = "✅ Connected & Working"
        response["database_name"] = info["name"]
        response["connection_status"] = "Connected"
        response["collections"] = info["collections"][:20]
    except Exception as e:
        logger.warning("Storage health check failed: %s", e)
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ============ Product Endpoints ============
@app.get("/api/products", response_model=List[Product])
async def list_products(user_id: str, storage: Storage = Depends(get_storage)):
    return await storage.get_products(user_id)


@app.get("/api/products/{product_id}", response_model=Product)
async def get_product(product_id: str, storage: Storage = Depends(get_storage)):
    return found(await storage.get_product(product_id), "Product")


@app.post("/api/products", response_model=Product, status_code=201)
async def add_product(product: ProductCreate, storage: Storage = Depends(get_storage)):
    return await storage.create_product(product)


@app.patch("/api/products/{product_id}", response_model=Product)
async def update_product(product_id: str, data: Dict[str, Any] = Body(...), storage: Storage = Depends(get_storage)):
    return found(await storage.update_product(product_id, data), "Product")


@app.delete("/api/products/{product_id}")
async def delete_product(product_id: str, storage: Storage = Depends(get_storage)):
    if not await storage.delete_product(product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    return {"deleted": True}


# ============ Checkout Pages ============
@app.get("/api/checkout-pages", response_model=List[CheckoutPageWithProduct])
async def list_checkout_pages(user_id: str, storage: Storage = Depends(get_storage)):
    return await storage.get_checkout_pages(user_id)


@app.get("/api/checkout-pages/slug/{slug}", response_model=CheckoutPageWithProduct)
async def get_checkout_page_by_slug(slug: str, storage: Storage = Depends(get_storage)):
    return found(await storage.get_checkout_page_by_slug(slug), "Checkout page")


@app.get("/api/checkout-pages/{page_id}", response_model=CheckoutPageWithProduct)
async def get_checkout_page(page_id: str, storage: Storage = Depends(get_storage)):
    return found(await storage.get_checkout_page(page_id), "Checkout page")


@app.post("/api/checkout-pages", response_model=CheckoutPage, status_code=201)
async def create_checkout_page(page: CheckoutPageCreate, storage: Storage = Depends(get_storage)):
    # slugs are public, check before insert so the caller gets a readable error
    if await storage.get_checkout_page_by_slug(page.slug) is not None:
        raise HTTPException(status_code=400, detail="Slug already in use")
    return await storage.create_checkout_page(page)


@app.patch("/api/checkout-pages/{page_id}", response_model=CheckoutPage)
async def update_checkout_page(page_id: str, data: Dict[str, Any] = Body(...), storage: Storage = Depends(get_storage)):
    return found(await storage.update_checkout_page(page_id, data), "Checkout page")


@app.delete("/api/checkout-pages/{page_id}")
async def delete_checkout_page(page_id: str, storage: Storage = Depends(get_storage)):
    if not await storage.delete_checkout_page(page_id):
        raise HTTPException(status_code=404, detail="Checkout page not found")
    return {"deleted": True}


# ============ Coupons ============
class ValidateCoupon(BaseModel):
    user_id: str
    code: str


@app.get("/api/coupons", response_model=List[Coupon])
async def list_coupons(user_id: str, active: Optional[bool] = None, storage: Storage = Depends(get_storage)):
    return await storage.get_coupons(user_id, active=active)


@app.post("/api/coupons", response_model=Coupon, status_code=201)
async def create_coupon(coupon: CouponCreate, storage: Storage = Depends(get_storage)):
    if await storage.get_coupon_by_code(coupon.code, coupon.user_id) is not None:
        raise HTTPException(status_code=400, detail="Coupon already exists")
    return await storage.create_coupon(coupon)


@app.post("/api/coupons/validate", response_model=Coupon)
async def check_coupon(payload: ValidateCoupon, storage: Storage = Depends(get_storage)):
    return await validate_coupon(storage, payload.code, payload.user_id)


@app.patch("/api/coupons/{coupon_id}", response_model=Coupon)
async def update_coupon(coupon_id: str, data: Dict[str, Any] = Body(...), storage: Storage = Depends(get_storage)):
    return found(await storage.update_coupon(coupon_id, data), "Coupon")


@app.delete("/api/coupons/{coupon_id}")
async def delete_coupon(coupon_id: str, storage: Storage = Depends(get_storage)):
    if not await storage.delete_coupon(coupon_id):
        raise HTTPException(status_code=404, detail="Coupon not found")
    return {"deleted": True}


# ============ Customers ============
@app.get("/api/customers", response_model=List[Customer])
async def list_customers(user_id: str, storage: Storage = Depends(get_storage)):
    return await storage.get_customers(user_id)


@app.get("/api/customers/{customer_id}", response_model=Customer)
async def get_customer(customer_id: str, storage: Storage = Depends(get_storage)):
    return found(await storage.get_customer(customer_id), "Customer")


# ============ Orders ============
@app.get("/api/orders", response_model=List[OrderWithDetails])
async def list_orders(user_id: str, storage: Storage = Depends(get_storage)):
    return await storage.get_orders(user_id)


@app.get("/api/orders/{order_id}", response_model=OrderDetail)
async def get_order(order_id: str, storage: Storage = Depends(get_storage)):
    return found(await storage.get_order(order_id), "Order")


# ============ Email Templates ============
@app.get("/api/email-templates", response_model=List[EmailTemplate])
async def list_email_templates(user_id: str, storage: Storage = Depends(get_storage)):
    return await storage.get_email_templates(user_id)


@app.post("/api/email-templates", response_model=EmailTemplate, status_code=201)
async def create_email_template(template: EmailTemplateCreate, storage: Storage = Depends(get_storage)):
    return await storage.create_email_template(template)


@app.patch("/api/email-templates/{template_id}", response_model=EmailTemplate)
async def update_email_template(template_id: str, data: Dict[str, Any] = Body(...), storage: Storage = Depends(get_storage)):
    return found(await storage.update_email_template(template_id, data), "Email template")


@app.delete("/api/email-templates/{template_id}")
async def delete_email_template(template_id: str, storage: Storage = Depends(get_storage)):
    if not await storage.delete_email_template(template_id):
        raise HTTPException(status_code=404, detail="Email template not found")
    return {"deleted": True}


# ============ Settings ============
# Each form writes a slice of the owner's profile; fields left out are kept.
class GeneralSettings(BaseModel):
    store_name: Optional[str] = None


class PaymentSettings(BaseModel):
    uddoktapay_api_key: Optional[str] = None
    uddoktapay_api_url: Optional[str] = None


class TrackingSettings(BaseModel):
    fb_pixel_id: Optional[str] = None
    fb_access_token: Optional[str] = None


class EmailSettings(BaseModel):
    from_email: Optional[str] = None


class DomainSettings(BaseModel):
    custom_domain: Optional[str] = None


async def save_settings(storage: Storage, user_id: str, changes: Dict[str, Any]):
    changes = {k: v for k, v in changes.items() if v is not None}
    found(await storage.update_user(user_id, changes), "User")
    return {"success": True}


@app.post("/api/settings/general")
async def save_general_settings(user_id: str, payload: GeneralSettings, storage: Storage = Depends(get_storage)):
    return await save_settings(storage, user_id, {"business_name": payload.store_name})


@app.post("/api/settings/payment")
async def save_payment_settings(user_id: str, payload: PaymentSettings, storage: Storage = Depends(get_storage)):
    return await save_settings(storage, user_id, payload.model_dump())


@app.post("/api/settings/tracking")
async def save_tracking_settings(user_id: str, payload: TrackingSettings, storage: Storage = Depends(get_storage)):
    return await save_settings(storage, user_id, {
        "facebook_pixel_id": payload.fb_pixel_id,
        "facebook_access_token": payload.fb_access_token,
    })


@app.post("/api/settings/email")
async def save_email_settings(user_id: str, payload: EmailSettings, storage: Storage = Depends(get_storage)):
    return await save_settings(storage, user_id, payload.model_dump())


@app.post("/api/settings/domain")
async def save_domain_settings(user_id: str, payload: DomainSettings, storage: Storage = Depends(get_storage)):
    return await save_settings(storage, user_id, payload.model_dump())


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
