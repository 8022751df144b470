import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from main import app


@pytest.fixture(params=["relational", "document"])
def client(request, monkeypatch):
    monkeypatch.setenv("DATABASE_TYPE", request.param)
    if request.param == "relational":
        monkeypatch.setenv("DATABASE_URL", "sqlite://")
    else:
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setattr(database, "MongoClient", mongomock.MongoClient)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def seller(client):
    storage = client.app.state.storage
    return client.portal.call(storage.create_user, {"email": "seller@example.com", "password": "pw"})


def test_root_and_health(client):
    assert client.get("/").json()["status"] == "ok"

    health = client.get("/test").json()
    assert health["connection_status"] == "Connected"
    assert "products" in health["collections"]


def test_product_lifecycle(client, seller):
    created = client.post("/api/products", json={"user_id": seller.id, "name": "Ebook", "price": 19.99})
    assert created.status_code == 201
    product = created.json()
    assert product["price"] == "19.99"
    assert product["download_limit"] == 5

    listed = client.get("/api/products", params={"user_id": seller.id}).json()
    assert [p["id"] for p in listed] == [product["id"]]

    patched = client.patch(f"/api/products/{product['id']}", json={"name": "Ebook 2"})
    assert patched.json()["name"] == "Ebook 2"
    assert client.patch(f"/api/products/{product['id']}", json={"nope": 1}).status_code == 400

    assert client.delete(f"/api/products/{product['id']}").json() == {"deleted": True}
    assert client.get(f"/api/products/{product['id']}").status_code == 404
    assert client.delete(f"/api/products/{product['id']}").status_code == 404


def test_checkout_page_by_slug(client, seller):
    product = client.post("/api/products", json={"user_id": seller.id, "name": "Ebook", "price": "19.99"}).json()
    page = {"user_id": seller.id, "product_id": product["id"], "name": "Launch", "slug": "launch"}

    assert client.post("/api/checkout-pages", json=page).status_code == 201
    assert client.post("/api/checkout-pages", json=page).status_code == 400

    found = client.get("/api/checkout-pages/slug/launch").json()
    assert found["product"]["id"] == product["id"]
    assert client.get("/api/checkout-pages/slug/missing").status_code == 404

    assert client.delete(f"/api/products/{product['id']}").status_code == 409


def test_coupon_validation_endpoint(client, seller):
    coupon = {"user_id": seller.id, "code": "WELCOME", "discount_type": "percentage", "discount_value": 10,
              "usage_limit": 1}
    created = client.post("/api/coupons", json=coupon).json()
    assert client.post("/api/coupons", json=coupon).status_code == 400

    ok = client.post("/api/coupons/validate", json={"user_id": seller.id, "code": "WELCOME"})
    assert ok.status_code == 200
    assert ok.json()["used_count"] == 0

    client.patch(f"/api/coupons/{created['id']}", json={"used_count": 1})
    limited = client.post("/api/coupons/validate", json={"user_id": seller.id, "code": "WELCOME"})
    assert limited.status_code == 400
    assert limited.json() == {"detail": "Coupon usage limit reached", "reason": "limit_reached"}

    missing = client.post("/api/coupons/validate", json={"user_id": seller.id, "code": "NOPE"})
    assert missing.status_code == 404


def test_unknown_owner_conflicts(client):
    response = client.post("/api/products", json={"user_id": "ghost", "name": "Ebook", "price": "1"})

    assert response.status_code == 409


def saved_user(client, user_id):
    return client.portal.call(client.app.state.storage.get_user, user_id)


def test_settings_forms_update_the_owner_profile(client, seller):
    forms = [
        ("general", {"store_name": "Ink & Paper"}),
        ("payment", {"uddoktapay_api_key": "key-1", "uddoktapay_api_url": "https://pay.example.com"}),
        ("tracking", {"fb_pixel_id": "px-42", "fb_access_token": "tok"}),
        ("email", {"from_email": "hello@inkpaper.example"}),
        ("domain", {"custom_domain": "shop.inkpaper.example"}),
    ]
    for form, body in forms:
        response = client.post(f"/api/settings/{form}", params={"user_id": seller.id}, json=body)
        assert response.status_code == 200
        assert response.json() == {"success": True}

    user = saved_user(client, seller.id)
    assert user.business_name == "Ink & Paper"
    assert user.uddoktapay_api_key == "key-1"
    assert user.uddoktapay_api_url == "https://pay.example.com"
    assert user.facebook_pixel_id == "px-42"
    assert user.facebook_access_token == "tok"
    assert user.from_email == "hello@inkpaper.example"
    assert user.custom_domain == "shop.inkpaper.example"
    assert user.email == "seller@example.com"


def test_settings_keep_fields_left_out(client, seller):
    client.post("/api/settings/payment", params={"user_id": seller.id}, json={"uddoktapay_api_key": "key-1"})
    client.post("/api/settings/payment", params={"user_id": seller.id}, json={"uddoktapay_api_url": "https://pay"})

    user = saved_user(client, seller.id)
    assert user.uddoktapay_api_key == "key-1"
    assert user.uddoktapay_api_url == "https://pay"


def test_settings_for_unknown_owner(client):
    response = client.post("/api/settings/domain", params={"user_id": "ghost"}, json={"custom_domain": "x"})

    assert response.status_code == 404


def test_coupon_listing_active_filter(client, seller):
    client.post("/api/coupons", json={"user_id": seller.id, "code": "ON", "discount_type": "fixed", "discount_value": 1})
    client.post("/api/coupons", json={
        "user_id": seller.id, "code": "OFF", "discount_type": "fixed", "discount_value": 1, "is_active": False,
    })

    active = client.get("/api/coupons", params={"user_id": seller.id, "active": "true"}).json()
    assert [c["code"] for c in active] == ["ON"]
    assert len(client.get("/api/coupons", params={"user_id": seller.id}).json()) == 2
